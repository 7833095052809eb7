"""
ShieldLedger Store

Versioned keyed storage for accounts, the reserve, policies, coverages and
claims, with optimistic concurrency:

1. A Transaction reads committed entities and remembers the version it saw
2. Writes are buffered inside the transaction
3. Commit takes the store's single commit lock, re-checks every observed
   version, appends one WAL record, then applies all writes together
4. Any version mismatch raises ConflictError and nothing is applied

`run()` retries an operation from a fresh read on ConflictError and gives up
with ContentionError once the retry budget is spent. No other error class is
retried.

Usage:
    store = LedgerStore()

    def bump(txn):
        account = txn.require(Account, "0xabc")
        txn.put(account.evolve(policies_count=account.policies_count + 1))

    store.run(bump)
"""
from __future__ import annotations

import logging
import random
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, ClassVar, Iterator, Optional, TypeVar, Union

from .canon import canonical_json_bytes, load_canonical
from .exceptions import (
    ConflictError,
    ContentionError,
    IntegrityFailError,
    LedgerError,
    NotFoundError,
    wrap_internal_exception,
)
from .models import RESERVE_KEY, Account, Claim, Coverage, LedgerEntity, Policy, Reserve
from .wal import FSYNC_PER_RECORD, WALError, WALReader, WALWriter, recover_wal

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=LedgerEntity)
T = TypeVar("T")

DEFAULT_MAX_RETRIES = 16
DEFAULT_BACKOFF_MS = 2


@dataclass(frozen=True)
class Sequence(LedgerEntity):
    """Monotonic id allocator stored like any other entity."""
    kind: ClassVar[str] = "sequence"

    name: str
    value: int = 0
    version: int = 0

    @property
    def key(self) -> str:
        return self.name


ENTITY_TYPES: dict[str, type[LedgerEntity]] = {
    cls.kind: cls for cls in (Account, Reserve, Policy, Coverage, Claim, Sequence)
}

EntityKey = tuple[str, str]


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction:
    """
    One optimistic unit of work.

    Not thread-safe; each attempt of each operation gets its own transaction.
    """

    def __init__(self, store: LedgerStore):
        self._store = store
        self._reads: dict[EntityKey, int] = {}
        self._writes: dict[EntityKey, LedgerEntity] = {}
        self._committed: dict[EntityKey, LedgerEntity] = {}
        self._seen: dict[EntityKey, Optional[LedgerEntity]] = {}

    @property
    def writes(self) -> list[LedgerEntity]:
        return list(self._writes.values())

    def _observe(self, key: EntityKey, entity: Optional[LedgerEntity]) -> None:
        version = entity.version if entity is not None else 0
        self._seen.setdefault(key, entity)
        seen = self._reads.setdefault(key, version)
        if seen != version:
            raise ConflictError(
                f"{key[0]} {key[1]} changed during the transaction",
                details={"kind": key[0], "key": key[1], "expected": seen, "actual": version},
            )

    def get(self, cls: type[E], key: str) -> Optional[E]:
        ek = (cls.kind, key)
        if ek in self._writes:
            return self._writes[ek]  # type: ignore[return-value]
        entity = self._store._read(ek)
        self._observe(ek, entity)
        return entity  # type: ignore[return-value]

    def require(self, cls: type[E], key: str) -> E:
        entity = self.get(cls, key)
        if entity is None:
            raise NotFoundError(
                f"{cls.kind} {key} not found",
                details={"kind": cls.kind, "key": key},
            )
        return entity

    def scan(self, cls: type[E], predicate: Optional[Callable[[E], bool]] = None) -> list[E]:
        """
        All entities of a kind, with this transaction's writes overlaid.

        Only matching entities are recorded as read.
        """
        merged: dict[str, LedgerEntity] = {
            key: entity for (kind, key), entity in self._store._items(cls.kind)
        }
        for (kind, key), entity in self._writes.items():
            if kind == cls.kind:
                merged[key] = entity

        result = []
        for key, entity in merged.items():
            if predicate is None or predicate(entity):  # type: ignore[arg-type]
                if (cls.kind, key) not in self._writes:
                    self._observe((cls.kind, key), entity)
                result.append(entity)
        return result  # type: ignore[return-value]

    def put(self, entity: LedgerEntity) -> None:
        self._writes[(entity.kind, entity.key)] = entity

    def next_id(self, name: str) -> int:
        seq = self.get(Sequence, name) or Sequence(name=name)
        allocated = seq.value + 1
        self.put(seq.evolve(value=allocated))
        return allocated

    # Typed accessors used by the engines

    def reserve(self) -> Reserve:
        return self.require(Reserve, RESERVE_KEY)

    def account(self, address: str) -> Account:
        return self.require(Account, address)

    def policy(self, policy_id: int) -> Policy:
        return self.require(Policy, str(policy_id))

    def claim(self, claim_id: int) -> Claim:
        return self.require(Claim, str(claim_id))

    def coverage(self, user: str, policy_id: int) -> Optional[Coverage]:
        return self.get(Coverage, Coverage.make_key(user, policy_id))

    def committed(self, cls: type[E], key: str) -> E:
        """Entity as stamped by commit, or as read when it was not written."""
        ek = (cls.kind, key)
        if ek in self._committed:
            return self._committed[ek]  # type: ignore[return-value]
        entity = self._seen.get(ek) or self._writes.get(ek)
        if entity is None:
            raise NotFoundError(f"{cls.kind} {key} not found", details={"kind": cls.kind, "key": key})
        return entity  # type: ignore[return-value]


# =============================================================================
# STORE
# =============================================================================

class LedgerStore:
    """
    In-memory versioned entity map with an optional write-ahead log.

    With wal_path set, the log is replayed on construction and every commit
    is appended before it becomes visible.

    With read_only set, the log is replayed without repairing or appending
    to it; later commits stay in memory.
    """

    def __init__(
        self,
        wal_path: Optional[Union[str, Path]] = None,
        ledger_id: str = "shieldly",
        fsync_policy: str = FSYNC_PER_RECORD,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_ms: int = DEFAULT_BACKOFF_MS,
        initial_yield_rate_bps: int = 0,
        read_only: bool = False,
    ):
        self._entities: dict[EntityKey, LedgerEntity] = {}
        self._lock = threading.Lock()
        self._max_retries = max_retries
        self._retry_backoff_ms = retry_backoff_ms
        self._wal: Optional[WALWriter] = None
        self._commits = 0

        if wal_path is not None:
            path = Path(wal_path)
            if path.exists():
                self._replay(path, repair=not read_only)
            elif read_only:
                raise NotFoundError(f"Ledger log {path} does not exist", details={"wal_path": str(path)})

            if not read_only:
                try:
                    self._wal = WALWriter.open_or_create(path, ledger_id, fsync_policy)
                except (WALError, OSError) as e:
                    raise wrap_internal_exception(e, details={"wal_path": str(path)}) from e

        if (Reserve.kind, RESERVE_KEY) not in self._entities:
            genesis = Transaction(self)
            genesis.get(Reserve, RESERVE_KEY)
            genesis.put(Reserve(yield_rate_bps=initial_yield_rate_bps))
            self.commit(genesis)
            logger.info("Initialized reserve (yield_rate_bps=%d)", initial_yield_rate_bps)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _replay(self, path: Path, repair: bool = True) -> None:
        try:
            if repair:
                _, _, truncated = recover_wal(path)
                if truncated:
                    logger.warning("Truncated %d bytes of torn WAL tail in %s", truncated, path)
            for record in WALReader(path):
                self._apply_payload(load_canonical(record.payload), record.sequence)
                self._commits += 1
        except LedgerError:
            raise
        except (WALError, ValueError, KeyError, TypeError) as e:
            raise IntegrityFailError(
                f"Ledger log {path} failed replay: {e}",
                details={"internal_error": type(e).__name__, "wal_path": str(path)},
            ) from e
        logger.info("Replayed %d commits from %s", self._commits, path)

    def _apply_payload(self, payload: dict[str, Any], sequence: int) -> None:
        for write in payload["writes"]:
            cls = ENTITY_TYPES[write["kind"]]
            entity = cls.from_dict(write["value"])
            ek = (cls.kind, entity.key)
            previous = self._entities.get(ek)
            expected = (previous.version if previous is not None else 0) + 1
            if entity.version != expected:
                raise IntegrityFailError(
                    f"Version gap for {ek[0]} {ek[1]} at record {sequence}",
                    details={"expected": expected, "actual": entity.version},
                )
            self._entities[ek] = entity

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read(self, key: EntityKey) -> Optional[LedgerEntity]:
        with self._lock:
            return self._entities.get(key)

    def _items(self, kind: str) -> list[tuple[EntityKey, LedgerEntity]]:
        with self._lock:
            return [(k, v) for k, v in self._entities.items() if k[0] == kind]

    def get(self, cls: type[E], key: str) -> Optional[E]:
        return self._read((cls.kind, key))  # type: ignore[return-value]

    def require(self, cls: type[E], key: str) -> E:
        entity = self.get(cls, key)
        if entity is None:
            raise NotFoundError(f"{cls.kind} {key} not found", details={"kind": cls.kind, "key": key})
        return entity

    def all(self, cls: type[E]) -> list[E]:
        """Committed entities of a kind, in creation order."""
        return [entity for _, entity in self._items(cls.kind)]  # type: ignore[misc]

    def snapshot(self) -> dict[EntityKey, LedgerEntity]:
        """Consistent copy of every committed entity."""
        with self._lock:
            return dict(self._entities)

    @property
    def commit_count(self) -> int:
        return self._commits

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Commit on clean exit; discard every buffered write on exception."""
        txn = Transaction(self)
        yield txn
        self.commit(txn)

    def commit(self, txn: Transaction) -> None:
        with self._lock:
            for ek, seen in txn._reads.items():
                current = self._entities.get(ek)
                if (current.version if current is not None else 0) != seen:
                    raise ConflictError(
                        f"{ek[0]} {ek[1]} was modified concurrently",
                        details={"kind": ek[0], "key": ek[1], "expected": seen},
                    )

            if not txn._writes:
                return

            stamped: dict[EntityKey, LedgerEntity] = {}
            for ek, entity in txn._writes.items():
                current = self._entities.get(ek)
                if ek not in txn._reads and current is not None:
                    raise ConflictError(
                        f"{ek[0]} {ek[1]} already exists",
                        details={"kind": ek[0], "key": ek[1]},
                    )
                version = (current.version if current is not None else 0) + 1
                stamped[ek] = entity.evolve(version=version)

            if self._wal is not None:
                payload = {
                    "commit": self._commits,
                    "writes": [
                        {"kind": ek[0], "key": ek[1], "value": entity.to_dict()}
                        for ek, entity in stamped.items()
                    ],
                }
                try:
                    self._wal.append(canonical_json_bytes(payload))
                except Exception as e:
                    raise wrap_internal_exception(e, default_message=f"WAL append failed: {e}") from e

            self._entities.update(stamped)
            self._commits += 1
            txn._committed = stamped

    def run(
        self,
        operation: Callable[[Transaction], T],
        name: str = "operation",
        retries: Optional[int] = None,
    ) -> T:
        """
        Execute operation(txn) and commit, retrying from a fresh read on conflict.

        Raises:
            ContentionError: when every attempt conflicted
        """
        attempts = (self._max_retries if retries is None else retries) + 1
        for attempt in range(1, attempts + 1):
            txn = Transaction(self)
            try:
                result = operation(txn)
                self.commit(txn)
                return result
            except ConflictError as e:
                logger.debug("%s conflicted (attempt %d/%d): %s", name, attempt, attempts, e.message)
                if self._retry_backoff_ms and attempt < attempts:
                    time.sleep(random.uniform(0, self._retry_backoff_ms * attempt) / 1000.0)

        logger.warning("%s gave up after %d conflicting attempts", name, attempts)
        raise ContentionError(
            f"{name} could not commit after {attempts} attempts",
            details={"operation": name, "attempts": attempts},
        )

    def _with_entity(self, cls: type[E], key: str, fn: Callable[[E], E], name: str) -> E:
        def op(txn: Transaction) -> Transaction:
            txn.put(fn(txn.require(cls, key)))
            return txn

        return self.run(op, name).committed(cls, key)

    def with_account(self, address: str, fn: Callable[[Account], Account]) -> Account:
        return self._with_entity(Account, address, fn, "with_account")

    def with_reserve(self, fn: Callable[[Reserve], Reserve]) -> Reserve:
        return self._with_entity(Reserve, RESERVE_KEY, fn, "with_reserve")

    def with_policy(self, policy_id: int, fn: Callable[[Policy], Policy]) -> Policy:
        return self._with_entity(Policy, str(policy_id), fn, "with_policy")

    def with_claim(self, claim_id: int, fn: Callable[[Claim], Claim]) -> Claim:
        return self._with_entity(Claim, str(claim_id), fn, "with_claim")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        if self._wal is not None:
            self._wal.close()
            self._wal = None

    def __enter__(self) -> LedgerStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
