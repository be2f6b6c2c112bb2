"""Tests for database storage layer."""

import pytest

from zkpool.chain.interface import NewAccountEvent
from zkpool.core.tree_mirror import TreeMirror
from zkpool.storage.database import CachedLeaf, DatabaseManager, StoredAccount
from zkpool.exceptions import StorageError

from fakes import ScriptedChain


@pytest.fixture
def store(temp_db):
    """Create a temporary database for testing."""
    manager = DatabaseManager(temp_db)
    manager.create_tables()
    yield manager
    manager.drop_tables()


def raw_events(count):
    return [
        {"index": i, "commitment": hex(100 + i), "nullifier": hex(200 + i),
         "encryptedAccount": "0x" + "00" * 188}
        for i in range(count)
    ]


def make_event(index, commitment=None):
    return NewAccountEvent(
        index=index,
        commitment=commitment if commitment is not None else 100 + index,
        nullifier_hash=200 + index,
        encrypted_account=bytes([index]) * 188,
    )


class TestDatabaseManager:
    """Test database manager initialization."""

    def test_database_creation(self, store):
        assert store.engine is not None
        assert store.SessionLocal is not None

    def test_get_session(self, store):
        session = store.get_session()
        assert session is not None
        session.close()


class TestLeafCache:
    """Tests for cached NewAccount events."""

    def test_save_and_load(self, store):
        events = [make_event(0), make_event(1)]
        assert store.save_events(events) == 2
        assert store.load_events() == events

    def test_load_in_index_order(self, store):
        store.save_events([make_event(1), make_event(0)])
        assert [e.index for e in store.load_events()] == [0, 1]

    def test_duplicates_skipped(self, store):
        store.save_events([make_event(0)])
        assert store.save_events([make_event(0), make_event(1)]) == 1
        assert store.leaf_count() == 2

    def test_repr(self, store):
        store.save_events([make_event(0)])
        with store.get_session() as session:
            leaf = session.get(CachedLeaf, 0)
            assert "CachedLeaf" in repr(leaf)

    def test_mirror_resumes_from_cache(self, store, hasher):
        first = TreeMirror(tree_height=4, hasher=hasher, store=store)
        chain = ScriptedChain([
            {"index": i, "commitment": hex(100 + i), "nullifier": hex(200 + i),
             "encryptedAccount": "0x" + "00" * 188}
            for i in range(3)
        ])
        first.sync(chain)

        resumed = TreeMirror(tree_height=4, hasher=hasher, store=store)
        assert resumed.account_count == 3
        assert resumed.local_root == first.local_root
        assert resumed.sync(chain) == 0

    def test_failed_save_retried_on_next_sync(self, store, hasher, monkeypatch):
        mirror = TreeMirror(tree_height=4, hasher=hasher, store=store)
        chain = ScriptedChain(raw_events(2))
        mirror.sync(chain)

        def broken(events):
            raise StorageError("disk full")

        original = store.save_events
        monkeypatch.setattr(store, "save_events", broken)
        chain.events = raw_events(4)
        with pytest.raises(StorageError):
            mirror.sync(chain)
        assert mirror.account_count == 4
        assert store.leaf_count() == 2

        monkeypatch.setattr(store, "save_events", original)
        chain.events = raw_events(6)
        assert mirror.sync(chain) == 2
        assert store.leaf_count() == 6

        restarted = TreeMirror(tree_height=4, hasher=hasher, store=store)
        assert restarted.account_count == 6
        assert restarted.local_root == mirror.local_root

    def test_cache_with_hole_refilled_from_chain(self, store, hasher):
        store.save_events([make_event(0), make_event(1), make_event(4), make_event(5)])

        mirror = TreeMirror(tree_height=4, hasher=hasher, store=store)
        assert mirror.account_count == 2

        assert mirror.sync(ScriptedChain(raw_events(6))) == 4
        assert mirror.account_count == 6
        assert [e.index for e in store.load_events()] == list(range(6))


class TestOwnedAccounts:
    """Tests for the wallet's encrypted notes."""

    def test_save_account(self, store):
        stored = store.save_account(0xabc, 0xdef, b"\x01" * 188, leaf_index=3)
        assert isinstance(stored, StoredAccount)
        assert stored.commitment == "0xabc"
        assert not stored.spent

    def test_save_account_is_idempotent(self, store):
        store.save_account(0xabc, 0xdef, b"\x01" * 188)
        store.save_account(0xabc, 0xdef, b"\x01" * 188, leaf_index=5)
        accounts = store.unspent_accounts()
        assert len(accounts) == 1
        assert accounts[0].leaf_index == 5

    def test_mark_spent(self, store):
        store.save_account(0xabc, 0xdef, b"\x01" * 188)
        store.save_account(0x123, 0x456, b"\x02" * 188)
        assert store.mark_spent(0xdef)
        assert [a.commitment for a in store.unspent_accounts()] == ["0x123"]

    def test_mark_unknown_spent(self, store):
        assert store.mark_spent(0x999) is False

    def test_no_plaintext_columns(self):
        columns = set(StoredAccount.__table__.columns.keys())
        assert "secret" not in columns
        assert "nullifier" not in columns
        assert "amount" not in columns
