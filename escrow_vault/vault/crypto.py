"""
Vault Crypto Core — Envelope sealing/opening, key derivation and payloads.

Implements the ECIES-style envelope used for every wallet bundle:
- Seal: ephemeral P-256 key → ECDH(ephemeral, receiver) → HKDF-SHA256
  → AES-256-GCM → hex([version 1B][ephemeral_pub 65B][nonce 12B][ct + tag 16B])
- Open: ECDH(receiver, ephemeral_pub) → same HKDF → authenticate + decrypt

The HKDF ``info`` binds both public keys, and the envelope header
(version + ephemeral key) is passed as associated data, so any flipped
byte fails authentication.

The same envelope carries the escrow key out of the custodial service
(an "export bundle"), sealed to a per-session transport key.

Security Note:
    Never log plaintext, envelopes or key material.
    Shared secrets and derived keys are wiped after use; OpenSSL key
    objects and the plaintext ``bytes`` returned by AES-GCM are immutable
    and cannot be wiped (see ``wipe.py``).
"""
import os
import logging
from typing import Any, Union

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ..exceptions import EnvelopeDecryptionError
from .wipe import wipe

logger = logging.getLogger("escrow.vault")

CURVE = ec.SECP256R1()
CURVE_NAME = "CURVE_P256"

ENVELOPE_VERSION = 0x01
POINT_SIZE = 65  # uncompressed SEC1 point
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256 / P-256 scalar

_HEADER_SIZE = 1 + POINT_SIZE
_MIN_ENVELOPE = _HEADER_SIZE + NONCE_SIZE + TAG_SIZE
_KDF_CONTEXT = b"escrow-vault/envelope/v1"

PublicKeyLike = Union[bytes, str, ec.EllipticCurvePublicKey]
PrivateKeyLike = Union[bytes, bytearray, memoryview]


# ---------------------------------------------------------------------------
# Key handling
# ---------------------------------------------------------------------------

def _strip_hex(value: str) -> str:
    value = value.strip()
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


def _encode_point(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


def load_public_key(public_key: PublicKeyLike) -> ec.EllipticCurvePublicKey:
    """Parse a P-256 public key from SEC1 bytes or hex (compressed or not).

    Raises:
        ValueError: If the encoding is invalid or the point is not on the curve.
    """
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return public_key
    if isinstance(public_key, str):
        public_key = bytes.fromhex(_strip_hex(public_key))
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, bytes(public_key))


def load_private_key(private_key: PrivateKeyLike) -> ec.EllipticCurvePrivateKey:
    """Build a P-256 private key object from a raw 32-byte scalar.

    Raises:
        ValueError: If the scalar has the wrong size or is out of range.
    """
    if len(private_key) != KEY_LENGTH:
        raise ValueError(
            f"Private key must be {KEY_LENGTH} bytes, got {len(private_key)}"
        )
    return ec.derive_private_key(int.from_bytes(private_key, "big"), CURVE)


def encode_public_key(public_key: PublicKeyLike) -> str:
    """Return the uncompressed hex encoding of a public key."""
    return _encode_point(load_public_key(public_key)).hex()


def public_key_from_private(private_key: PrivateKeyLike) -> bytes:
    """Return the uncompressed public point for a raw private scalar."""
    return _encode_point(load_private_key(private_key).public_key())


def generate_keypair() -> tuple[bytearray, bytes]:
    """Generate a fresh P-256 keypair.

    Returns:
        Tuple of (private scalar as a wipeable bytearray, uncompressed public key).
    """
    key = ec.generate_private_key(CURVE)
    scalar = bytearray(key.private_numbers().private_value.to_bytes(KEY_LENGTH, "big"))
    return scalar, _encode_point(key.public_key())


def private_key_from_hex(value: str) -> bytearray:
    """Decode a ``0x``-prefixed or bare hex private key into a bytearray.

    Raises:
        ValueError: If the value is not 32 bytes of hex.
    """
    key = bytearray.fromhex(_strip_hex(value))
    if len(key) != KEY_LENGTH:
        size = len(key)
        wipe(key)
        raise ValueError(f"Private key must be {KEY_LENGTH} bytes, got {size}")
    return key


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(shared_secret: PrivateKeyLike, context: bytes) -> bytearray:
    """Derive a 32-byte symmetric key from an ECDH secret using HKDF-SHA256.

    Args:
        shared_secret: Raw ECDH output.
        context: Context bytes for domain separation.

    Returns:
        32-byte derived key as a wipeable bytearray.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # ephemeral ECDH input is already unique per envelope
        info=context,
    )
    return bytearray(hkdf.derive(shared_secret))


def _envelope_key(
    own_key: ec.EllipticCurvePrivateKey,
    peer: ec.EllipticCurvePublicKey,
    ephemeral_bytes: bytes,
    receiver_bytes: bytes,
) -> bytearray:
    shared = bytearray(own_key.exchange(ec.ECDH(), peer))
    try:
        return derive_key(shared, _KDF_CONTEXT + ephemeral_bytes + receiver_bytes)
    finally:
        wipe(shared)


# ---------------------------------------------------------------------------
# Envelope codec
# ---------------------------------------------------------------------------

def seal_envelope(public_key: PublicKeyLike, plaintext: bytes) -> str:
    """Encrypt ``plaintext`` so only the holder of the matching private key can read it.

    Non-deterministic: a fresh ephemeral key and nonce are used per call.

    Args:
        public_key: Receiver P-256 public key (bytes, hex or key object).
        plaintext: Data to encrypt.

    Returns:
        Hex-encoded envelope.
    """
    receiver = load_public_key(public_key)
    receiver_bytes = _encode_point(receiver)
    ephemeral = ec.generate_private_key(CURVE)
    ephemeral_bytes = _encode_point(ephemeral.public_key())
    key = _envelope_key(ephemeral, receiver, ephemeral_bytes, receiver_bytes)
    del ephemeral
    try:
        header = bytes([ENVELOPE_VERSION]) + ephemeral_bytes
        nonce = os.urandom(NONCE_SIZE)
        ct = AESGCM(key).encrypt(nonce, plaintext, header)
    finally:
        wipe(key)
    return (header + nonce + ct).hex()


def open_envelope(private_key: PrivateKeyLike, envelope: Union[str, bytes]) -> bytes:
    """Authenticate and decrypt an envelope produced by :func:`seal_envelope`.

    Args:
        private_key: Receiver raw 32-byte private scalar.
        envelope: Hex string (or raw bytes) envelope.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        EnvelopeDecryptionError: If the envelope is malformed, tampered with,
            or sealed to a different key.
        ValueError: If ``private_key`` itself is not a valid P-256 scalar.
    """
    if isinstance(envelope, str):
        try:
            raw = bytes.fromhex(envelope)
        except ValueError as err:
            raise EnvelopeDecryptionError("Envelope is not valid hex") from err
    else:
        raw = bytes(envelope)
    if len(raw) < _MIN_ENVELOPE:
        raise EnvelopeDecryptionError(
            f"Envelope too short: {len(raw)} bytes (minimum {_MIN_ENVELOPE})"
        )
    if raw[0] != ENVELOPE_VERSION:
        raise EnvelopeDecryptionError(f"Unsupported envelope version: {raw[0]}")
    header = raw[:_HEADER_SIZE]
    ephemeral_bytes = raw[1:_HEADER_SIZE]
    nonce = raw[_HEADER_SIZE:_HEADER_SIZE + NONCE_SIZE]
    ct = raw[_HEADER_SIZE + NONCE_SIZE:]
    try:
        ephemeral = load_public_key(ephemeral_bytes)
    except ValueError as err:
        raise EnvelopeDecryptionError("Envelope carries an invalid ephemeral key") from err

    receiver = load_private_key(private_key)
    receiver_bytes = _encode_point(receiver.public_key())
    key = _envelope_key(receiver, ephemeral, _encode_point(ephemeral), receiver_bytes)
    try:
        return AESGCM(key).decrypt(nonce, ct, header)
    except InvalidTag as err:
        raise EnvelopeDecryptionError("Envelope authentication failed") from err
    finally:
        wipe(key)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def serialize_secret(payload: dict[str, Any]) -> bytes:
    """Serialize a wallet secret payload for sealing.

    The payload must carry a ``privateKey`` hex string; ``type`` and any
    derivation metadata travel alongside it.
    """
    if not isinstance(payload.get("privateKey"), str):
        raise ValueError("Wallet secret payload requires a 'privateKey' string")
    return orjson.dumps(payload)


def deserialize_secret(data: bytes) -> dict[str, Any]:
    """Parse a decrypted wallet secret payload.

    Raises:
        ValueError: If the data is not a JSON object with a ``privateKey`` string.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise ValueError("Wallet secret payload is not valid JSON") from err
    if not isinstance(parsed, dict) or not isinstance(parsed.get("privateKey"), str):
        raise ValueError("Wallet secret payload has no 'privateKey'")
    return parsed


# ---------------------------------------------------------------------------
# Key export bundles
# ---------------------------------------------------------------------------

def wrap_export_bundle(
    transport_public_key: PublicKeyLike,
    private_key: PrivateKeyLike,
    organization_id: str,
) -> str:
    """Seal an escrow private key to a transport public key for export."""
    payload = orjson.dumps({
        "organizationId": organization_id,
        "privateKey": bytes(private_key).hex(),
    })
    return seal_envelope(transport_public_key, payload)


def unwrap_export_bundle(
    export_bundle: str,
    transport_private_key: PrivateKeyLike,
    organization_id: str,
) -> bytearray:
    """Recover the escrow private key from an export bundle.

    Args:
        export_bundle: Envelope returned by the custodial key export.
        transport_private_key: Ephemeral private key the bundle was sealed to.
        organization_id: Organization the export must have been issued for.

    Returns:
        Raw 32-byte escrow private key as a wipeable bytearray.

    Raises:
        EnvelopeDecryptionError: If the bundle does not open, is malformed,
            or was issued for another organization.
    """
    plaintext = open_envelope(transport_private_key, export_bundle)
    try:
        data = orjson.loads(plaintext)
    except orjson.JSONDecodeError as err:
        raise EnvelopeDecryptionError("Export bundle payload is not valid JSON") from err
    if not isinstance(data, dict):
        raise EnvelopeDecryptionError("Export bundle payload is not an object")
    if data.get("organizationId") != organization_id:
        raise EnvelopeDecryptionError(
            "Export bundle was issued for a different organization"
        )
    try:
        return private_key_from_hex(data.get("privateKey") or "")
    except ValueError as err:
        raise EnvelopeDecryptionError("Export bundle carries an invalid key") from err
