"""Escrow Vault.

Encrypted wallet bundles at rest, decrypted per session with an escrow
key exported from a custodial service.
"""
from .version import __version__
from .conf import EscrowConfig
from .exceptions import (
    EscrowError,
    ConfigurationError,
    StoreFormatError,
    EnvelopeDecryptionError,
    CollaboratorUnavailableError,
    SessionStateError,
    SessionAlreadyActiveError,
    ErasureError,
)
