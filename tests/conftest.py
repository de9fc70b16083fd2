"""Shared fixtures for the escrow vault tests."""
import pytest

from escrow_vault.vault.crypto import generate_keypair
from escrow_vault.vault.custodian import InMemoryCustodian
from escrow_vault.vault.session import SessionManager
from escrow_vault.vault.store import add_bundle, create_store
from escrow_vault.vault.wallets import generate_individual_bundles

ORGANIZATION_ID = "org-test"


@pytest.fixture
def organization_id():
    return ORGANIZATION_ID


@pytest.fixture
def keypair():
    """A raw P-256 keypair (private bytearray, public bytes)."""
    return generate_keypair()


@pytest.fixture
def custodian():
    """In-process custodial service."""
    return InMemoryCustodian(ORGANIZATION_ID)


@pytest.fixture
def escrow_key(custodian):
    """Escrow key held by the custodian."""
    private_key, _ = generate_keypair()
    return custodian.import_key(private_key, name="escrow", tags=["escrow", "encryption"])


@pytest.fixture
def make_store(escrow_key):
    """Build a store with ``count`` wallets sealed to the escrow key."""
    def _make(count: int = 3):
        store = create_store(escrow_key.key_id, ORGANIZATION_ID)
        for bundle in generate_individual_bundles(escrow_key.public_key, count):
            add_bundle(store, bundle)
        return store
    return _make


@pytest.fixture
def manager(custodian):
    """Session manager bound to the in-process custodian."""
    mgr = SessionManager(custodian, ORGANIZATION_ID, export_timeout=5.0, max_workers=4)
    yield mgr
    mgr.burn()
