"""
Tests for wallet generation and local signing.

Tests cover:
- Address consistency between a bundle and its sealed key
- Individual and HD (BIP-44) generation
- EIP-191 signing and signer recovery
"""
import pytest

from escrow_vault.vault.crypto import deserialize_secret, open_envelope, private_key_from_hex
from escrow_vault.vault.wallets import (
    address_from_private_key,
    create_bundle,
    generate_hd_bundles,
    generate_individual_bundles,
    recover_signer,
    sign_message,
)

# Well-known development mnemonic; account 0 is a widely published address.
DEV_MNEMONIC = "test test test test test test test test test test test junk"
DEV_ADDRESS_0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def _open(private_key, bundle):
    return deserialize_secret(open_envelope(private_key, bundle.encrypted_data))


class TestCreateBundle:
    """Tests for create_bundle()."""

    def test_address_matches_sealed_key(self, keypair):
        escrow_private, escrow_public = keypair
        wallet_key = bytearray(b"\x42" * 32)
        bundle = create_bundle(escrow_public, wallet_key, "wallet-x", "X")
        payload = _open(escrow_private, bundle)
        assert payload["type"] == "individual"
        recovered = private_key_from_hex(payload["privateKey"])
        assert recovered == wallet_key
        assert address_from_private_key(recovered) == bundle.address

    def test_metadata_travels_in_payload(self, keypair):
        escrow_private, escrow_public = keypair
        bundle = create_bundle(
            escrow_public, b"\x01" * 32, "wallet-0", "HD Wallet #0",
            wallet_type="hd-derived", derivationPath="m/44'/60'/0'/0/0", index=0,
        )
        payload = _open(escrow_private, bundle)
        assert payload["derivationPath"] == "m/44'/60'/0'/0/0"
        assert payload["index"] == 0
        assert "privateKey" not in bundle.model_dump_json()


class TestGeneration:
    """Tests for bulk generation."""

    def test_individual_bundles(self, keypair):
        escrow_private, escrow_public = keypair
        bundles = generate_individual_bundles(escrow_public, 5)
        assert [b.id for b in bundles] == [f"wallet-{i}" for i in range(5)]
        assert [b.name for b in bundles] == [f"Wallet #{i}" for i in range(5)]
        assert len({b.address for b in bundles}) == 5
        for bundle in bundles:
            payload = _open(escrow_private, bundle)
            key = private_key_from_hex(payload["privateKey"])
            assert address_from_private_key(key) == bundle.address

    def test_hd_bundles_follow_bip44(self, keypair):
        escrow_private, escrow_public = keypair
        bundles, mnemonic = generate_hd_bundles(escrow_public, 3, mnemonic=DEV_MNEMONIC)
        assert mnemonic == DEV_MNEMONIC
        assert bundles[0].address == DEV_ADDRESS_0
        assert bundles[2].name == "HD Wallet #2"
        payload = _open(escrow_private, bundles[1])
        assert payload["type"] == "hd-derived"
        assert payload["derivationPath"] == "m/44'/60'/0'/0/1"
        assert payload["index"] == 1

    def test_hd_generates_mnemonic(self, keypair):
        _, escrow_public = keypair
        bundles, mnemonic = generate_hd_bundles(escrow_public, 1)
        assert len(mnemonic.split()) == 24
        again, _ = generate_hd_bundles(escrow_public, 1, mnemonic=mnemonic)
        assert again[0].address == bundles[0].address

    @pytest.mark.parametrize("count", [0, 101])
    def test_count_bounds(self, keypair, count):
        _, escrow_public = keypair
        with pytest.raises(ValueError):
            generate_individual_bundles(escrow_public, count)
        with pytest.raises(ValueError):
            generate_hd_bundles(escrow_public, count)


class TestSigning:
    """Tests for local message signing."""

    def test_sign_and_recover(self):
        key = bytearray(b"\x11" * 32)
        signature = sign_message(key, "Hello, escrow!")
        assert signature.startswith("0x")
        assert len(signature) == 2 + 65 * 2
        assert recover_signer("Hello, escrow!", signature) == address_from_private_key(key)

    def test_sign_bytes(self):
        key = b"\x22" * 32
        signature = sign_message(key, b"\x00\x01binary")
        assert recover_signer(b"\x00\x01binary", signature) == address_from_private_key(key)

    def test_signature_is_deterministic(self):
        key = b"\x33" * 32
        assert sign_message(key, "same") == sign_message(key, "same")
