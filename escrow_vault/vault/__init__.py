"""Escrow Vault — Wallet keys sealed at rest, opened per session.

Security Note (Threat Model):
    Wallet keys are sealed to an escrow public key whose private half is
    held by a custodial service and exported only for the length of a
    session. While a session is active the escrow key and every wallet key
    live in process memory; a memory dump taken then exposes them.
    Ending the session overwrites the buffers the vault owns, but Python
    cannot wipe immutable copies (``bytes``, ``str``, ``int``, OpenSSL key
    objects) made along the way. Those remain until the memory is reused.
    This is an accepted limitation; stronger guarantees need an HSM or a
    secure enclave.
"""

from .crypto import seal_envelope, open_envelope, generate_keypair
from .custodian import CustodialClient, InMemoryCustodian, KeyHandle
from .key_rotation import rotate_escrow_key
from .session import SessionManager, SessionState, SessionStats
from .store import (
    WalletBundle,
    WalletStore,
    create_store,
    add_bundle,
    persist_store,
    load_store,
    save_store_file,
    load_store_file,
)
from .wipe import wipe, SecretBuffer

__all__ = [
    "seal_envelope",
    "open_envelope",
    "generate_keypair",
    "CustodialClient",
    "InMemoryCustodian",
    "KeyHandle",
    "rotate_escrow_key",
    "SessionManager",
    "SessionState",
    "SessionStats",
    "WalletBundle",
    "WalletStore",
    "create_store",
    "add_bundle",
    "persist_store",
    "load_store",
    "save_store_file",
    "load_store_file",
    "wipe",
    "SecretBuffer",
]
