# src/stakepool/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple

from stakepool.ledger.constants import GENESIS_CYCLE_ID
from stakepool.ledger.cycle_ledger import CycleLedger
from stakepool.ledger.staker_ledger import StakerLedger
from stakepool.ledger.types import PoolConfig, PoolState

Json = Dict[str, Any]

# "STPL" in the SQLite header marks a file as a stake pool database.
POOL_APPLICATION_ID = 0x5354504C

_SCHEMA: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS pool_singleton (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      state_json TEXT NOT NULL,
      config_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS stakers (
      account TEXT PRIMARY KEY,
      record_json TEXT NOT NULL,
      active INTEGER NOT NULL,
      staked_amount INTEGER NOT NULL CHECK (staked_amount >= 0),
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_stakers_active ON stakers(active);",
    """
    CREATE TABLE IF NOT EXISTS cycles (
      cycle_id INTEGER PRIMARY KEY,
      start_block INTEGER NOT NULL,
      record_json TEXT NOT NULL,
      complete INTEGER NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_cycles_start ON cycles(start_block);",
    # A sealed cycle is immutable at the storage layer too.
    """
    CREATE TRIGGER IF NOT EXISTS trg_cycles_sealed_immutable
    BEFORE UPDATE ON cycles
    FOR EACH ROW WHEN OLD.complete = 1
    BEGIN
      SELECT RAISE(ABORT, 'cycle_sealed_immutable');
    END;
    """,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    # No default=str: a non-JSON value reaching a persisted record must fail.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer; got {raw!r}") from None


@dataclass(frozen=True)
class SqliteTuning:
    """Connection knobs for the pool database, read from STAKEPOOL_SQLITE_*.

    Prod pools default to synchronous=FULL, dev and testnet to NORMAL.
    """

    synchronous: str
    busy_timeout_ms: int
    write_deadline_ms: int
    backoff_base_ms: int
    backoff_max_ms: int
    wal_autocheckpoint: int

    @classmethod
    def from_env(cls) -> "SqliteTuning":
        mode = (os.environ.get("STAKEPOOL_MODE") or "prod").strip().lower()
        default_sync = "FULL" if mode == "prod" else "NORMAL"
        sync = (os.environ.get("STAKEPOOL_SQLITE_SYNCHRONOUS") or default_sync).strip().upper()
        if sync not in {"NORMAL", "FULL", "EXTRA"}:
            raise ValueError(f"STAKEPOOL_SQLITE_SYNCHRONOUS must be NORMAL, FULL or EXTRA; got {sync!r}")
        base = max(1, _env_int("STAKEPOOL_SQLITE_WRITE_BACKOFF_BASE_MS", 5))
        return cls(
            synchronous=sync,
            busy_timeout_ms=max(0, _env_int("STAKEPOOL_SQLITE_BUSY_TIMEOUT_MS", 30_000)),
            write_deadline_ms=max(250, _env_int("STAKEPOOL_SQLITE_WRITE_DEADLINE_MS", 30_000)),
            backoff_base_ms=base,
            backoff_max_ms=max(base, _env_int("STAKEPOOL_SQLITE_WRITE_BACKOFF_MAX_MS", 250)),
            wal_autocheckpoint=max(1, _env_int("STAKEPOOL_SQLITE_WAL_AUTOCHECKPOINT", 1000)),
        )


def _is_lock_contention(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "database is locked" in msg or "database is busy" in msg


class SqliteDB:
    """One pool database file: the singleton row, stakers and cycles.

    Connections are never shared; each read or write opens its own. Every pool
    operation is one ``write_tx()``, and BEGIN IMMEDIATE takes the single
    writer lock up front, so two operations never interleave their
    read-modify-write of PoolState, whether they run in threads or processes.
    The header carries POOL_APPLICATION_ID and the schema version in
    ``user_version``; a file with other values is refused.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str, tuning: SqliteTuning | None = None) -> None:
        self.path = str(path)
        self.tuning = tuning or SqliteTuning.from_env()

    def _connect(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        t = self.tuning
        con = sqlite3.connect(
            self.path,
            timeout=t.busy_timeout_ms / 1000.0,
            isolation_level=None,  # BEGIN/COMMIT are issued explicitly
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row
        try:
            mode = str(con.execute("PRAGMA journal_mode=WAL;").fetchone()[0]).lower()
            if mode != "wal":
                raise RuntimeError(f"pool database needs WAL journaling; sqlite reports {mode!r}")
            con.execute(f"PRAGMA synchronous={t.synchronous};")
            con.execute("PRAGMA temp_store=MEMORY;")
            con.execute(f"PRAGMA wal_autocheckpoint={t.wal_autocheckpoint};")
            con.execute(f"PRAGMA busy_timeout={t.busy_timeout_ms};")
        except Exception:
            con.close()
            raise
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            app_id = int(con.execute("PRAGMA application_id;").fetchone()[0])
            version = int(con.execute("PRAGMA user_version;").fetchone()[0])
            if app_id == 0 and version == 0:
                con.execute(f"PRAGMA application_id={POOL_APPLICATION_ID};")
                con.execute(f"PRAGMA user_version={self.SCHEMA_VERSION};")
            elif app_id != POOL_APPLICATION_ID:
                raise RuntimeError(f"{self.path} is not a stake pool database (application_id={app_id:#x})")
            elif version != self.SCHEMA_VERSION:
                raise RuntimeError(
                    f"sqlite schema_version mismatch: have={version} want={self.SCHEMA_VERSION}; "
                    "refusing to open the pool"
                )
            for stmt in _SCHEMA:
                con.execute(stmt)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    def _retry(self, con: sqlite3.Connection, stmt: str, deadline_ms: int) -> None:
        attempt = 0
        while True:
            try:
                con.execute(stmt)
                return
            except sqlite3.OperationalError as e:
                if not _is_lock_contention(e) or _now_ms() >= deadline_ms:
                    raise
            t = self.tuning
            sleep_ms = min(t.backoff_max_ms, t.backoff_base_ms * (2 ** min(attempt, 8)))
            time.sleep(sleep_ms * (0.5 + random.random()) / 1000.0)
            attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """One pool write transaction.

        BEGIN IMMEDIATE and COMMIT are retried with jittered backoff while
        another writer holds the lock, up to the write deadline. Anything
        raised inside the block rolls back and propagates unchanged.
        """
        deadline = _now_ms() + self.tuning.write_deadline_ms
        with self.connection() as con:
            self._retry(con, "BEGIN IMMEDIATE;", deadline)
            try:
                yield con
                self._retry(con, "COMMIT;", deadline)
            except Exception:
                if con.in_transaction:
                    con.execute("ROLLBACK;")
                raise


@dataclass
class PoolUnitOfWork:
    """Everything one pool operation may touch, bound to one write transaction.

    ``state`` and ``config`` are working copies; SqlitePoolStore writes them
    back only if the operation body finishes without raising.
    ``transfers`` queues value movements (src, dst, amount) that the caller
    settles after its checks and before COMMIT.
    """

    con: sqlite3.Connection
    stakers: StakerLedger
    cycles: CycleLedger
    state: PoolState
    config: PoolConfig
    transfers: List[Tuple[str, str, int]] = field(default_factory=list)


class SqlitePoolStore:
    """Pool persistence in SQLite.

    Layout:
      - pool_singleton: PoolState + PoolConfig (one row)
      - stakers: StakerRecord by account
      - cycles: CycleRecord by cycle id

    ``unit_of_work()`` is the only write path.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM pool_singleton WHERE id=1;").fetchone() is not None

    @staticmethod
    def _read_singleton(con: sqlite3.Connection) -> tuple[PoolState, PoolConfig]:
        row = con.execute("SELECT state_json, config_json FROM pool_singleton WHERE id=1;").fetchone()
        if row is None:
            raise FileNotFoundError("sqlite pool_singleton is missing")
        st = PoolState.from_json(json.loads(str(row["state_json"])))
        cfg = PoolConfig.from_json(json.loads(str(row["config_json"])))
        return st, cfg

    @staticmethod
    def _write_singleton(con: sqlite3.Connection, state: PoolState, config: PoolConfig) -> None:
        con.execute(
            """
            INSERT INTO pool_singleton(id, state_json, config_json, updated_ts_ms)
            VALUES(1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              state_json=excluded.state_json,
              config_json=excluded.config_json,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (_canon_json(state.to_json()), _canon_json(config.to_json()), _now_ms()),
        )

    def initialize(self, *, config: PoolConfig, genesis_block: int) -> bool:
        """Create the singleton row and open the first cycle. No-op if present."""
        with self._db.write_tx() as con:
            if con.execute("SELECT 1 FROM pool_singleton WHERE id=1;").fetchone() is not None:
                return False
            cycles = CycleLedger(con)
            first = cycles.create(
                GENESIS_CYCLE_ID,
                int(genesis_block),
                cycle_length=int(config.cycle_length),
                reward_rate_per_block=int(config.reward_rate_per_block),
            )
            state = PoolState(current_cycle=first.cycle_id, cycle_start_block=first.start_block)
            self._write_singleton(con, state, config)
            return True

    def read_state(self) -> PoolState:
        with self._db.connection() as con:
            return self._read_singleton(con)[0]

    def read_config(self) -> PoolConfig:
        with self._db.connection() as con:
            return self._read_singleton(con)[1]

    @contextmanager
    def read_view(self) -> Iterator[PoolUnitOfWork]:
        """Read-only view; nothing is written back."""
        with self._db.connection() as con:
            st, cfg = self._read_singleton(con)
            yield PoolUnitOfWork(con=con, stakers=StakerLedger(con), cycles=CycleLedger(con), state=st, config=cfg)

    @contextmanager
    def unit_of_work(self) -> Iterator[PoolUnitOfWork]:
        with self._db.write_tx() as con:
            st, cfg = self._read_singleton(con)
            uow = PoolUnitOfWork(con=con, stakers=StakerLedger(con), cycles=CycleLedger(con), state=st, config=cfg)
            yield uow
            self._write_singleton(con, uow.state, uow.config)
