"""
Wallet Bundle Store — Persisted collection of sealed wallet secrets.

The store is a single JSON document:

    {
      "version": "1.0",
      "encryptionKeyId": "...",
      "organizationId": "...",
      "bundles": [{"id", "name", "encryptedData", "address", "createdAt"}, ...],
      "createdAt": "<ISO-8601>",
      "updatedAt": "<ISO-8601>"
    }

Every bundle in a store is sealed to the public key of ``encryptionKeyId``.
The store is a single-writer offline artifact; no locking is done here.
"""
import os
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..exceptions import StoreFormatError

logger = logging.getLogger("escrow.vault")

STORE_VERSION = "1.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WalletBundle(BaseModel):
    """One wallet's sealed secret plus its public metadata."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    name: str
    encrypted_data: str = Field(alias="encryptedData", min_length=1)
    address: str
    created_at: datetime = Field(alias="createdAt", default_factory=utcnow)


class WalletStore(BaseModel):
    """Ordered collection of bundles sealed under one escrow key."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = STORE_VERSION
    encryption_key_id: str = Field(alias="encryptionKeyId", min_length=1)
    organization_id: str = Field(alias="organizationId", min_length=1)
    bundles: list[WalletBundle] = Field(default_factory=list)
    created_at: datetime = Field(alias="createdAt", default_factory=utcnow)
    updated_at: datetime = Field(alias="updatedAt", default_factory=utcnow)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "WalletStore":
        """Bundle ids address wallets inside a session; they must be unique."""
        seen: set[str] = set()
        for bundle in self.bundles:
            if bundle.id in seen:
                raise ValueError(f"Duplicate bundle id {bundle.id!r}")
            seen.add(bundle.id)
        return self

    def get_bundle(self, bundle_id: str) -> WalletBundle:
        for bundle in self.bundles:
            if bundle.id == bundle_id:
                return bundle
        raise KeyError(bundle_id)


def create_store(encryption_key_id: str, organization_id: str) -> WalletStore:
    """Create an empty store bound to an escrow key and organization."""
    now = utcnow()
    return WalletStore(
        encryption_key_id=encryption_key_id,
        organization_id=organization_id,
        created_at=now,
        updated_at=now,
    )


def add_bundle(store: WalletStore, bundle: WalletBundle) -> WalletStore:
    """Append a bundle and bump ``updatedAt``.

    Decryptability is not checked here; that happens at session start.

    Raises:
        ValueError: If a bundle with the same id is already in the store.
    """
    if any(b.id == bundle.id for b in store.bundles):
        raise ValueError(f"Bundle id {bundle.id!r} already in store")
    store.bundles.append(bundle)
    store.updated_at = utcnow()
    return store


def persist_store(store: WalletStore) -> bytes:
    """Serialize a store to its JSON document."""
    return orjson.dumps(
        store.model_dump(mode="json", by_alias=True),
        option=orjson.OPT_INDENT_2,
    )


def load_store(data: Union[bytes, str]) -> WalletStore:
    """Parse and validate a store document.

    Raises:
        StoreFormatError: If the document is not valid JSON or does not
            match the store schema.
    """
    try:
        parsed: Any = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise StoreFormatError(f"Wallet store is not valid JSON: {err}") from err
    try:
        return WalletStore.model_validate(parsed)
    except ValidationError as err:
        raise StoreFormatError(f"Invalid wallet store document: {err}") from err


def save_store_file(store: WalletStore, path: Union[str, Path]) -> Path:
    """Write the store to ``path``, replacing any previous file atomically."""
    path = Path(path)
    data = persist_store(store)
    fd, tmp = tempfile.mkstemp(dir=path.parent or ".", prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    logger.info(
        "Saved wallet store: %d bundle(s) to %s", len(store.bundles), path,
    )
    return path


def load_store_file(path: Union[str, Path]) -> WalletStore:
    """Read a store from ``path``.

    Raises:
        StoreFormatError: If the file is missing or invalid.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except FileNotFoundError as err:
        raise StoreFormatError(
            f"No encrypted wallet store found at {path}. Generate wallets first."
        ) from err
    store = load_store(data)
    logger.debug("Loaded wallet store with %d bundle(s) from %s", len(store.bundles), path)
    return store


def store_summary(store: WalletStore, limit: int = 10) -> dict:
    """Public view of a store: ids, timestamps, counts and addresses only."""
    return {
        "version": store.version,
        "encryptionKeyId": store.encryption_key_id,
        "organizationId": store.organization_id,
        "createdAt": store.created_at.isoformat(),
        "updatedAt": store.updated_at.isoformat(),
        "bundleCount": len(store.bundles),
        "wallets": [
            {"id": b.id, "name": b.name, "address": b.address}
            for b in store.bundles[:limit]
        ],
    }
