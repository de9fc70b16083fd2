"""
Escrow Configuration — Identifier loading and validated settings.

Reads settings from environment variables:
    ORGANIZATION_ID = <custodial organization id>
    ENCRYPTION_KEY_ID = <escrow key id, set after the key is created>
    ESCROW_STORE_PATH = <path to the encrypted wallet store document>
    ESCROW_EXPORT_TIMEOUT = <seconds allowed for the key export call>
    ESCROW_DECRYPT_WORKERS = <threads used to open bundles>

Security Note:
    Never log key material. Only log key IDs and organization IDs.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger("escrow.vault")

DEFAULT_STORE_PATH = "encrypted-wallet-store.json"
DEFAULT_EXPORT_TIMEOUT = 30.0
DEFAULT_DECRYPT_WORKERS = 4


def get_organization_id() -> str:
    """Read the custodial organization id from ORGANIZATION_ID.

    Returns:
        Organization id string.

    Raises:
        ConfigurationError: If ORGANIZATION_ID is not set or empty.
    """
    raw = os.environ.get("ORGANIZATION_ID", "").strip()
    if not raw:
        raise ConfigurationError(
            "Missing required environment variable: ORGANIZATION_ID"
        )
    return raw


class EscrowConfig(BaseModel):
    """Validated escrow vault configuration."""

    organization_id: str = Field(min_length=1)
    encryption_key_id: Optional[str] = None
    store_path: str = Field(default=DEFAULT_STORE_PATH, min_length=1)
    export_timeout: float = Field(default=DEFAULT_EXPORT_TIMEOUT, gt=0)
    decrypt_workers: int = Field(default=DEFAULT_DECRYPT_WORKERS, ge=1, le=64)

    @field_validator("encryption_key_id")
    @classmethod
    def strip_identifier(cls, v: Optional[str]) -> Optional[str]:
        """Strip whitespace; an empty key id means "not created yet"."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    def require_encryption_key_id(self) -> str:
        """Return the escrow key id or fail with an actionable message.

        Raises:
            ConfigurationError: If no escrow key id is configured.
        """
        if not self.encryption_key_id:
            raise ConfigurationError(
                "Missing ENCRYPTION_KEY_ID. Create the escrow encryption key first."
            )
        return self.encryption_key_id

    @classmethod
    def from_env(cls) -> "EscrowConfig":
        """Create EscrowConfig by loading values from environment.

        Returns:
            Populated EscrowConfig instance.

        Raises:
            ConfigurationError: If a value is missing or does not validate.
        """
        organization_id = get_organization_id()
        try:
            config = cls(
                organization_id=organization_id,
                encryption_key_id=os.environ.get("ENCRYPTION_KEY_ID"),
                store_path=os.environ.get("ESCROW_STORE_PATH", DEFAULT_STORE_PATH),
                export_timeout=os.environ.get(
                    "ESCROW_EXPORT_TIMEOUT", DEFAULT_EXPORT_TIMEOUT
                ),
                decrypt_workers=os.environ.get(
                    "ESCROW_DECRYPT_WORKERS", DEFAULT_DECRYPT_WORKERS
                ),
            )
        except ValidationError as err:
            raise ConfigurationError(f"Invalid escrow configuration: {err}") from err
        logger.debug(
            "Loaded escrow config for organization=%s (key configured: %s)",
            config.organization_id, config.encryption_key_id is not None,
        )
        return config
