"""
Tests for the in-process custodial service.

Tests cover:
- Key creation and public key lookup
- Export bundles wrapped to a transport key
- Remote signing and key deletion
"""
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from escrow_vault.exceptions import CollaboratorUnavailableError
from escrow_vault.vault.crypto import (
    generate_keypair,
    load_public_key,
    public_key_from_private,
    unwrap_export_bundle,
)
from escrow_vault.vault.custodian import CustodialClient, InMemoryCustodian


class TestInMemoryCustodian:
    """Tests for InMemoryCustodian."""

    def test_satisfies_client_interface(self, custodian):
        assert isinstance(custodian, CustodialClient)

    @pytest.mark.asyncio
    async def test_create_key(self, custodian):
        handle = await custodian.create_key("escrow", tags=["escrow", "encryption"])
        assert handle.curve == "CURVE_P256"
        assert handle.tags == ("escrow", "encryption")
        assert await custodian.get_public_key(handle.key_id) == handle.public_key
        load_public_key(handle.public_key)

    @pytest.mark.asyncio
    async def test_unsupported_curve(self, custodian):
        with pytest.raises(ValueError):
            await custodian.create_key("bad", curve="CURVE_SECP256K1")

    @pytest.mark.asyncio
    async def test_export_round_trip(self, custodian, organization_id):
        escrow_private, _ = generate_keypair()
        expected_public = public_key_from_private(escrow_private)
        handle = custodian.import_key(escrow_private)
        assert escrow_private == bytearray(32)

        transport_private, transport_public = generate_keypair()
        bundle = await custodian.export_key(handle.key_id, transport_public.hex())
        key = unwrap_export_bundle(bundle, transport_private, organization_id)
        assert public_key_from_private(key) == expected_public
        assert custodian.export_calls == 1

    @pytest.mark.asyncio
    async def test_sign_transaction(self, custodian, escrow_key):
        payload = b"unsigned-transaction"
        signature = await custodian.sign_transaction(escrow_key.key_id, payload)
        public_key = load_public_key(escrow_key.public_key)
        public_key.verify(bytes.fromhex(signature), payload, ec.ECDSA(hashes.SHA256()))

    @pytest.mark.asyncio
    async def test_delete_key(self, custodian, escrow_key):
        await custodian.delete_key(escrow_key.key_id)
        with pytest.raises(KeyError):
            await custodian.get_public_key(escrow_key.key_id)
        with pytest.raises(KeyError):
            await custodian.delete_key(escrow_key.key_id)

    @pytest.mark.asyncio
    async def test_unavailable(self, escrow_key):
        custodian = InMemoryCustodian("org-x")
        custodian.available = False
        with pytest.raises(CollaboratorUnavailableError):
            await custodian.get_public_key(escrow_key.key_id)
