"""
Tests for the versioned store: optimistic commits, retries and WAL replay.
"""
import pytest

from shieldledger.exceptions import (
    ConflictError,
    ContentionError,
    IntegrityFailError,
    NotFoundError,
)
from shieldledger.models import Account, Reserve
from shieldledger.store import LedgerStore, Sequence, Transaction
from shieldledger.wal import WALWriter


def add_account(store, address, **fields):
    def op(txn):
        txn.get(Account, address)
        txn.put(Account(address=address, **fields))

    store.run(op, "add_account")


# ============================================================================
# COMMITS
# ============================================================================

class TestCommit:
    def test_genesis_reserve(self, store):
        reserve = store.require(Reserve, "reserve")
        assert reserve.version == 1
        assert store.commit_count == 1

    def test_initial_yield_rate(self):
        assert LedgerStore(initial_yield_rate_bps=500).require(Reserve, "reserve").yield_rate_bps == 500

    def test_versions_stamped_on_commit(self, store):
        add_account(store, "0xa", stake=1)
        updated = store.with_account("0xa", lambda a: a.evolve(stake=2))

        assert updated.version == 2
        assert store.require(Account, "0xa").stake == 2

    def test_require_missing(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.require(Account, "0xnobody")

        assert exc_info.value.details == {"kind": "account", "key": "0xnobody"}

    def test_with_account_missing(self, store):
        with pytest.raises(NotFoundError):
            store.with_account("0xnobody", lambda a: a)

    def test_stale_read_conflicts(self, store):
        add_account(store, "0xa", stake=1)

        stale = Transaction(store)
        account = stale.require(Account, "0xa")
        store.with_account("0xa", lambda a: a.evolve(stake=5))
        stale.put(account.evolve(stake=account.stake + 1))

        with pytest.raises(ConflictError):
            store.commit(stale)
        assert store.require(Account, "0xa").stake == 5

    def test_read_only_transaction_validates_reads(self, store):
        add_account(store, "0xa")
        txn = Transaction(store)
        txn.require(Account, "0xa")
        store.with_account("0xa", lambda a: a.evolve(stake=9))

        with pytest.raises(ConflictError):
            store.commit(txn)

    def test_blind_insert_of_existing_entity_conflicts(self, store):
        add_account(store, "0xa")
        txn = Transaction(store)
        txn.put(Account(address="0xa"))

        with pytest.raises(ConflictError):
            store.commit(txn)

    def test_transaction_discards_writes_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as txn:
                txn.get(Account, "0xa")
                txn.put(Account(address="0xa"))
                raise RuntimeError("abort")

        assert store.get(Account, "0xa") is None
        assert store.commit_count == 1

    def test_next_id_is_monotonic(self, store):
        ids = [store.run(lambda txn: txn.next_id("policy")) for _ in range(3)]

        assert ids == [1, 2, 3]
        assert store.require(Sequence, "policy").value == 3

    def test_scan_overlays_buffered_writes(self, store):
        add_account(store, "0xa", stake=1)
        add_account(store, "0xb", stake=0)

        with store.transaction() as txn:
            txn.put(txn.require(Account, "0xb").evolve(stake=4))
            staked = txn.scan(Account, lambda a: a.stake > 0)

        assert sorted(a.address for a in staked) == ["0xa", "0xb"]

    def test_all_in_creation_order(self, store):
        for address in ("0xc", "0xa", "0xb"):
            add_account(store, address)

        assert [a.address for a in store.all(Account)] == ["0xc", "0xa", "0xb"]


# ============================================================================
# RETRIES
# ============================================================================

class TestRun:
    def test_retries_then_succeeds(self, store):
        add_account(store, "0xa")
        attempts = []

        def op(txn):
            account = txn.require(Account, "0xa")
            attempts.append(account.version)
            if len(attempts) == 1:
                # A concurrent writer lands between read and commit
                store.with_account("0xa", lambda a: a.evolve(stake=a.stake + 10))
            txn.put(account.evolve(stake=account.stake + 1))

        store.run(op, "bump")

        assert len(attempts) == 2
        assert store.require(Account, "0xa").stake == 11

    def test_contention_when_retries_exhausted(self, store):
        add_account(store, "0xa")

        def op(txn):
            account = txn.require(Account, "0xa")
            store.with_account("0xa", lambda a: a.evolve(stake=a.stake + 1))
            txn.put(account.evolve(kyc_verified=True))

        with pytest.raises(ContentionError) as exc_info:
            store.run(op, "always_conflicts", retries=2)

        assert exc_info.value.details == {"operation": "always_conflicts", "attempts": 3}
        assert not store.require(Account, "0xa").kyc_verified

    def test_other_errors_are_not_retried(self, store):
        calls = []

        def op(txn):
            calls.append(1)
            txn.account("0xnobody")

        with pytest.raises(NotFoundError):
            store.run(op)
        assert len(calls) == 1


# ============================================================================
# PERSISTENCE
# ============================================================================

class TestPersistence:
    def test_replay_restores_state(self, tmp_path):
        path = tmp_path / "ledger.wal"
        with LedgerStore(wal_path=path, initial_yield_rate_bps=500) as store:
            add_account(store, "0xa", stake=7)
            store.with_account("0xa", lambda a: a.evolve(stake=8))
            commits = store.commit_count

        with LedgerStore(wal_path=path, initial_yield_rate_bps=0) as reopened:
            account = reopened.require(Account, "0xa")
            assert account.stake == 8
            assert account.version == 2
            assert reopened.require(Reserve, "reserve").yield_rate_bps == 500
            assert reopened.commit_count == commits

    def test_replay_continues_appending(self, tmp_path):
        path = tmp_path / "ledger.wal"
        with LedgerStore(wal_path=path) as store:
            add_account(store, "0xa")
        with LedgerStore(wal_path=path) as store:
            add_account(store, "0xb")
        with LedgerStore(wal_path=path) as store:
            assert [a.address for a in store.all(Account)] == ["0xa", "0xb"]

    def test_torn_tail_is_repaired(self, tmp_path):
        path = tmp_path / "ledger.wal"
        with LedgerStore(wal_path=path) as store:
            add_account(store, "0xa")
        with open(path, "ab") as f:
            f.write(b"\x01\x02")

        with LedgerStore(wal_path=path) as store:
            assert store.get(Account, "0xa") is not None

    def test_read_only_does_not_touch_file(self, tmp_path):
        path = tmp_path / "ledger.wal"
        with LedgerStore(wal_path=path) as store:
            add_account(store, "0xa")
        with open(path, "ab") as f:
            f.write(b"\x01\x02")
        size = path.stat().st_size

        store = LedgerStore(wal_path=path, read_only=True)
        add_account(store, "0xb")

        assert store.get(Account, "0xa") is not None
        assert path.stat().st_size == size

    def test_read_only_missing_file(self, tmp_path):
        with pytest.raises(NotFoundError):
            LedgerStore(wal_path=tmp_path / "absent.wal", read_only=True)

    def test_undecodable_log_is_integrity_failure(self, tmp_path):
        path = tmp_path / "ledger.wal"
        with WALWriter.create(path, "shieldly") as writer:
            writer.append(b'{"writes":[{"kind":"mystery","key":"x","value":{}}]}')

        with pytest.raises(IntegrityFailError):
            LedgerStore(wal_path=path)

    def test_version_gap_is_integrity_failure(self, tmp_path):
        path = tmp_path / "ledger.wal"
        with WALWriter.create(path, "shieldly") as writer:
            writer.append(
                b'{"commit":0,"writes":[{"kind":"sequence","key":"policy",'
                b'"value":{"name":"policy","value":1,"version":2}}]}'
            )

        with pytest.raises(IntegrityFailError):
            LedgerStore(wal_path=path)
