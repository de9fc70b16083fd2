"""
Wallet setup — generate wallet keys and seal them into bundles.

Wallet secrets are Ethereum secp256k1 keys; addresses and message
signatures come from ``eth_account``. Each secret is sealed to the escrow
public key and only its checksummed address is stored in the clear.

Security Note:
    ``eth_account`` only accepts immutable ``bytes`` keys, so every call
    into it leaves a copy the vault cannot wipe.
"""
import logging
import secrets
from typing import Optional, Union

from eth_account import Account
from eth_account.hdaccount import generate_mnemonic, key_from_seed, seed_from_mnemonic
from eth_account.messages import encode_defunct
from eth_account.types import Language

from .crypto import PublicKeyLike, seal_envelope, serialize_secret
from .store import WalletBundle, utcnow
from .wipe import wipe

logger = logging.getLogger("escrow.vault")

Account.enable_unaudited_hdwallet_features()

ETH_DERIVATION_PATH = "m/44'/60'/0'/0/{}"
MAX_WALLETS = 100

KeyBytes = Union[bytes, bytearray, memoryview]
Message = Union[str, bytes]


def _signable(message: Message):
    if isinstance(message, str):
        return encode_defunct(text=message)
    return encode_defunct(primitive=bytes(message))


def address_from_private_key(private_key: KeyBytes) -> str:
    """Checksummed Ethereum address for a raw 32-byte key."""
    return Account.from_key(bytes(private_key)).address


def sign_message(private_key: KeyBytes, message: Message) -> str:
    """EIP-191 personal-sign ``message`` locally; returns a 0x-hex signature."""
    signed = Account.sign_message(_signable(message), private_key=bytes(private_key))
    return "0x" + bytes(signed.signature).hex()


def recover_signer(message: Message, signature: str) -> str:
    """Return the address that produced ``signature`` over ``message``."""
    return Account.recover_message(_signable(message), signature=signature)


def _check_count(count: int) -> None:
    if not 1 <= count <= MAX_WALLETS:
        raise ValueError(f"Wallet count must be between 1 and {MAX_WALLETS}, got {count}")


def create_bundle(
    public_key: PublicKeyLike,
    private_key: KeyBytes,
    wallet_id: str,
    name: str,
    wallet_type: str = "individual",
    **metadata,
) -> WalletBundle:
    """Seal one wallet key to the escrow public key.

    The stored address is derived from the same key that is sealed, so the
    bundle's address always matches its decrypted contents.

    Args:
        public_key: Escrow public key.
        private_key: Raw 32-byte wallet key.
        wallet_id: Bundle id, unique within a store.
        name: Display name.
        wallet_type: ``"individual"`` or ``"hd-derived"``.
        **metadata: Extra payload fields (``derivationPath``, ``index``).

    Returns:
        The sealed bundle.
    """
    address = address_from_private_key(private_key)
    payload = {"type": wallet_type, "privateKey": "0x" + bytes(private_key).hex()}
    payload.update(metadata)
    encrypted = seal_envelope(public_key, serialize_secret(payload))
    return WalletBundle(
        id=wallet_id,
        name=name,
        encrypted_data=encrypted,
        address=address,
        created_at=utcnow(),
    )


def generate_individual_bundles(public_key: PublicKeyLike, count: int) -> list[WalletBundle]:
    """Generate ``count`` independent random wallets, sealed."""
    _check_count(count)
    bundles = []
    for i in range(count):
        key = bytearray(secrets.token_bytes(32))
        try:
            bundles.append(
                create_bundle(public_key, key, f"wallet-{i}", f"Wallet #{i}")
            )
        finally:
            wipe(key)
    logger.info("Generated and sealed %d individual wallet(s)", len(bundles))
    return bundles


def generate_hd_bundles(
    public_key: PublicKeyLike,
    count: int,
    mnemonic: Optional[str] = None,
    passphrase: str = "",
) -> tuple[list[WalletBundle], str]:
    """Derive ``count`` wallets along the BIP-44 Ethereum path, sealed.

    Args:
        public_key: Escrow public key.
        count: Number of accounts (1..100).
        mnemonic: Existing mnemonic; a 24-word one is generated when omitted.
        passphrase: Optional BIP-39 passphrase.

    Returns:
        Tuple of (bundles, mnemonic). The caller owns the mnemonic.
    """
    _check_count(count)
    if mnemonic is None:
        mnemonic = generate_mnemonic(num_words=24, lang=Language.ENGLISH)
    seed = bytearray(seed_from_mnemonic(mnemonic, passphrase=passphrase))
    bundles = []
    try:
        for i in range(count):
            path = ETH_DERIVATION_PATH.format(i)
            key = bytearray(key_from_seed(bytes(seed), path))
            try:
                bundles.append(
                    create_bundle(
                        public_key, key, f"wallet-{i}", f"HD Wallet #{i}",
                        wallet_type="hd-derived", derivationPath=path, index=i,
                    )
                )
            finally:
                wipe(key)
    finally:
        wipe(seed)
    logger.info("Derived and sealed %d HD wallet(s)", len(bundles))
    return bundles, mnemonic
