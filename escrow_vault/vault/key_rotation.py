"""
Vault Key Rotation — Re-seal every wallet bundle under a new escrow key.

Runs inside an active session (the wallet keys must already be decrypted)
and produces a new store; the source store and its envelopes are never
modified. Ids, names, addresses and creation times carry over unchanged.

Security Note:
    Plaintext exists in memory only while each wallet is re-sealed.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import Optional

from ..exceptions import SessionStateError
from .crypto import PublicKeyLike, encode_public_key
from .session import SessionManager
from .store import WalletStore, create_store, utcnow

logger = logging.getLogger("escrow.vault")


async def rotate_escrow_key(
    manager: SessionManager,
    store: WalletStore,
    new_key_id: str,
    new_public_key: Optional[PublicKeyLike] = None,
) -> tuple[WalletStore, dict]:
    """Re-seal all bundles of ``store`` to the escrow key ``new_key_id``.

    Args:
        manager: Manager holding an active session opened from ``store``.
        store: Store to rotate from.
        new_key_id: Escrow key id the new store is bound to.
        new_public_key: Public key of ``new_key_id``; fetched from the
            custodial service when omitted.

    Returns:
        Tuple of (new store, stats dict with keys: total, rotated).

    Raises:
        ValueError: If ``new_key_id`` is the store's current key.
        SessionStateError: If no session is active, the session was not
            opened from this store's key, or a bundle of the store is not
            part of it under the same address.
    """
    if new_key_id == store.encryption_key_id:
        raise ValueError(f"Store is already sealed to key {new_key_id}")
    if not manager.is_active:
        raise SessionStateError("Key rotation needs an active session")
    if new_public_key is None:
        new_public_key = await manager.custodian.get_public_key(new_key_id)
    new_public_key = encode_public_key(new_public_key)
    # checked after the await; the session may have changed meanwhile
    if manager.encryption_key_id != store.encryption_key_id:
        raise SessionStateError(
            f"Active session was opened with key {manager.encryption_key_id}, "
            f"not the store's key {store.encryption_key_id}"
        )
    addresses = {w.id: w.address.lower() for w in manager.wallets}
    for bundle in store.bundles:
        if addresses.get(bundle.id) != bundle.address.lower():
            raise SessionStateError(
                f"Wallet {bundle.id!r} is not part of the active session"
            )

    stats = {"total": len(store.bundles), "rotated": 0}
    logger.info(
        "Starting escrow key rotation from %s to %s (%d bundle(s))",
        store.encryption_key_id, new_key_id, stats["total"],
    )

    rotated = create_store(new_key_id, store.organization_id)
    rotated.created_at = store.created_at
    for bundle in store.bundles:
        try:
            encrypted = manager.seal_wallet(bundle.id, new_public_key)
        except KeyError as err:
            raise SessionStateError(
                f"Wallet {bundle.id!r} is not part of the active session"
            ) from err
        rotated.bundles.append(bundle.model_copy(update={"encrypted_data": encrypted}))
        stats["rotated"] += 1
    rotated.updated_at = utcnow()

    logger.info("Key rotation complete: %s", stats)
    return rotated, stats
