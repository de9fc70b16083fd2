"""
Tests for escrow key rotation.

Tests cover:
- Re-sealing a store to a new escrow key
- Preservation of bundle metadata and the source store
- Preconditions (active session, distinct key, session opened from the
  same store)
"""
import pytest

from escrow_vault.exceptions import SessionStateError
from escrow_vault.vault.crypto import generate_keypair
from escrow_vault.vault.key_rotation import rotate_escrow_key
from escrow_vault.vault.session import SessionManager
from escrow_vault.vault.store import add_bundle, create_store, persist_store
from escrow_vault.vault.wallets import generate_individual_bundles


class TestRotateEscrowKey:
    """Tests for rotate_escrow_key()."""

    @pytest.mark.asyncio
    async def test_rotate_to_new_key(self, manager, custodian, make_store, organization_id):
        store = make_store(4)
        original = persist_store(store)
        new_key = await custodian.create_key("escrow-v2", tags=["escrow"])

        await manager.start_session(store)
        rotated, stats = await rotate_escrow_key(manager, store, new_key.key_id)
        await manager.end_session()

        assert stats == {"total": 4, "rotated": 4}
        assert persist_store(store) == original
        assert rotated.encryption_key_id == new_key.key_id
        assert rotated.organization_id == store.organization_id
        assert rotated.created_at == store.created_at
        for old, new in zip(store.bundles, rotated.bundles):
            assert (new.id, new.name, new.address, new.created_at) == (
                old.id, old.name, old.address, old.created_at,
            )
            assert new.encrypted_data != old.encrypted_data

        second = SessionManager(custodian, organization_id)
        stats = await second.start_session(rotated)
        assert stats.wallet_count == 4
        assert [w.address for w in second.wallets] == [b.address for b in store.bundles]
        await second.end_session()

    @pytest.mark.asyncio
    async def test_explicit_public_key(self, manager, make_store):
        store = make_store(2)
        new_private, new_public = generate_keypair()
        await manager.start_session(store)
        rotated, _ = await rotate_escrow_key(manager, store, "key-v2", new_public)
        assert len(rotated.bundles) == 2
        from escrow_vault.vault.session import open_wallet_bundle
        wallet = open_wallet_bundle(new_private, rotated.bundles[0])
        assert wallet.address == store.bundles[0].address

    @pytest.mark.asyncio
    async def test_requires_active_session(self, manager, make_store):
        store = make_store(1)
        _, new_public = generate_keypair()
        with pytest.raises(SessionStateError):
            await rotate_escrow_key(manager, store, "key-v2", new_public)

    @pytest.mark.asyncio
    async def test_same_key_is_rejected(self, manager, make_store):
        store = make_store(1)
        await manager.start_session(store)
        with pytest.raises(ValueError):
            await rotate_escrow_key(manager, store, store.encryption_key_id)

    @pytest.mark.asyncio
    async def test_bundle_missing_from_session(self, manager, make_store):
        store = make_store(2)
        await manager.start_session(store)
        other = make_store(3)
        _, new_public = generate_keypair()
        with pytest.raises(SessionStateError):
            await rotate_escrow_key(manager, other, "key-v2", new_public)

    @pytest.mark.asyncio
    async def test_store_under_other_key_is_rejected(
        self, manager, custodian, make_store, organization_id,
    ):
        await manager.start_session(make_store(2))
        other_private, _ = generate_keypair()
        other_key = custodian.import_key(other_private, name="escrow-other")
        other = create_store(other_key.key_id, organization_id)
        for bundle in generate_individual_bundles(other_key.public_key, 2):
            add_bundle(other, bundle)
        _, new_public = generate_keypair()
        with pytest.raises(SessionStateError, match="opened with key"):
            await rotate_escrow_key(manager, other, "key-v2", new_public)

    @pytest.mark.asyncio
    async def test_same_ids_other_addresses_are_rejected(self, manager, make_store):
        await manager.start_session(make_store(2))
        other = make_store(2)
        _, new_public = generate_keypair()
        with pytest.raises(SessionStateError, match="wallet-0"):
            await rotate_escrow_key(manager, other, "key-v2", new_public)
