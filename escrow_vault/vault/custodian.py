"""
Custodial Service Client — Interface consumed by the escrow vault.

The custodial service holds the escrow private key. The vault only needs
key creation, public key lookup, key export wrapped to a transport key,
and remote signing; any client implementing :class:`CustodialClient`
works (a real HTTP client, or a fake in tests).

``InMemoryCustodian`` keeps keys in process memory. It is meant for
offline use and tests, never for production custody.
"""
import asyncio
import logging
import uuid
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict

from ..exceptions import CollaboratorUnavailableError
from .crypto import (
    CURVE_NAME,
    encode_public_key,
    generate_keypair,
    load_private_key,
    public_key_from_private,
    wrap_export_bundle,
)
from .wipe import SecretBuffer

logger = logging.getLogger("escrow.vault")


class KeyHandle(BaseModel):
    """Identifier and public half of a key held by the custodial service."""

    model_config = ConfigDict(frozen=True)

    key_id: str
    public_key: str  # uncompressed SEC1, hex
    curve: str = CURVE_NAME
    name: str = ""
    tags: tuple[str, ...] = ()


@runtime_checkable
class CustodialClient(Protocol):
    """Operations the vault needs from the custodial service."""

    async def create_key(
        self, name: str, curve: str = CURVE_NAME, tags: Sequence[str] = ()
    ) -> KeyHandle:
        ...

    async def get_public_key(self, key_id: str) -> str:
        ...

    async def export_key(self, key_id: str, transport_public_key: str) -> str:
        """Return the private key sealed to ``transport_public_key``."""
        ...

    async def sign_transaction(self, key_id: str, payload: bytes) -> str:
        ...


class InMemoryCustodian:
    """Process-local custodial service.

    Args:
        organization_id: Organization stamped into every export bundle.
        latency: Optional artificial delay (seconds) before each call.
    """

    def __init__(self, organization_id: str, latency: float = 0.0):
        self.organization_id = organization_id
        self.latency = latency
        self.available = True
        self.export_calls = 0
        self._keys: dict[str, tuple[KeyHandle, SecretBuffer]] = {}

    async def _call(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        if not self.available:
            raise CollaboratorUnavailableError("Custodial service is unavailable")

    def _secret(self, key_id: str) -> SecretBuffer:
        try:
            return self._keys[key_id][1]
        except KeyError:
            raise KeyError(f"Unknown key id: {key_id}") from None

    def import_key(
        self, private_key: bytearray, name: str = "", tags: Sequence[str] = ()
    ) -> KeyHandle:
        """Take custody of an existing P-256 key. The input buffer is wiped."""
        handle = KeyHandle(
            key_id=str(uuid.uuid4()),
            public_key=public_key_from_private(private_key).hex(),
            name=name,
            tags=tuple(tags),
        )
        self._keys[handle.key_id] = (handle, SecretBuffer(private_key))
        logger.info("Custodian holds key id=%s name=%s", handle.key_id, name)
        return handle

    async def create_key(
        self, name: str, curve: str = CURVE_NAME, tags: Sequence[str] = ()
    ) -> KeyHandle:
        await self._call()
        if curve != CURVE_NAME:
            raise ValueError(f"Unsupported curve: {curve}")
        private_key, _ = generate_keypair()
        return self.import_key(private_key, name=name, tags=tags)

    async def get_public_key(self, key_id: str) -> str:
        await self._call()
        self._secret(key_id)
        return encode_public_key(self._keys[key_id][0].public_key)

    async def export_key(self, key_id: str, transport_public_key: str) -> str:
        await self._call()
        self.export_calls += 1
        secret = self._secret(key_id)
        logger.info("Custodian exporting key id=%s", key_id)
        return wrap_export_bundle(
            transport_public_key, secret.view(), self.organization_id,
        )

    async def sign_transaction(self, key_id: str, payload: bytes) -> str:
        await self._call()
        key = load_private_key(self._secret(key_id).view())
        return key.sign(payload, ec.ECDSA(hashes.SHA256())).hex()

    async def delete_key(self, key_id: str) -> None:
        await self._call()
        _, secret = self._keys.pop(key_id, (None, None))
        if secret is None:
            raise KeyError(f"Unknown key id: {key_id}")
        secret.close()
        logger.info("Custodian deleted key id=%s", key_id)
