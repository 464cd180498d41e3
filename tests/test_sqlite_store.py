from __future__ import annotations

import multiprocessing as mp
import sqlite3
from pathlib import Path

import pytest

from stakepool.ledger.types import PoolConfig
from stakepool.runtime.clock import ManualBlockClock
from stakepool.runtime.controller import PoolController
from stakepool.runtime.sqlite_db import POOL_APPLICATION_ID, SqliteDB, SqlitePoolStore, SqliteTuning
from stakepool.runtime.transfer import MemoryBalances


def _pragma(con: sqlite3.Connection, name: str) -> int | str:
    row = con.execute(f"PRAGMA {name};").fetchone()
    if row is None:
        raise AssertionError(f"missing pragma: {name}")
    return row[0]


def _config() -> PoolConfig:
    return PoolConfig(owner="admin", capacity=10**9, minimum_stake=1, cycle_length=10, reward_rate_per_block=10)


def test_sqlite_operational_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STAKEPOOL_MODE", "prod")
    monkeypatch.delenv("STAKEPOOL_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("STAKEPOOL_SQLITE_BUSY_TIMEOUT_MS", "1234")
    monkeypatch.setenv("STAKEPOOL_SQLITE_WAL_AUTOCHECKPOINT", "777")

    db = SqliteDB(path=str(tmp_path / "pool.db"))
    db.init_schema()

    with db.connection() as con:
        assert str(_pragma(con, "journal_mode")).lower() == "wal"
        # FULL is the prod default.
        assert int(_pragma(con, "synchronous")) == 2
        # MEMORY corresponds to 2
        assert int(_pragma(con, "temp_store")) == 2
        assert int(_pragma(con, "busy_timeout")) == 1234
        assert int(_pragma(con, "wal_autocheckpoint")) == 777


def test_dev_mode_defaults_to_normal_sync(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STAKEPOOL_MODE", "dev")
    monkeypatch.delenv("STAKEPOOL_SQLITE_SYNCHRONOUS", raising=False)
    db = SqliteDB(path=str(tmp_path / "pool.db"))
    with db.connection() as con:
        assert int(_pragma(con, "synchronous")) == 1


def test_schema_version_mismatch_refuses_to_start(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "pool.db"))
    db.init_schema()
    with db.write_tx() as con:
        con.execute("PRAGMA user_version=99;")

    with pytest.raises(RuntimeError, match="schema_version mismatch"):
        db.init_schema()


def test_foreign_database_file_is_refused(tmp_path: Path) -> None:
    path = tmp_path / "other.db"
    con = sqlite3.connect(str(path))
    con.execute("PRAGMA user_version=3;")
    con.execute("CREATE TABLE notes (body TEXT);")
    con.commit()
    con.close()

    with pytest.raises(RuntimeError, match="not a stake pool database"):
        SqliteDB(path=str(path)).init_schema()


def test_new_database_is_stamped_as_a_pool_file(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "pool.db"))
    db.init_schema()
    with db.connection() as con:
        assert int(_pragma(con, "application_id")) == POOL_APPLICATION_ID
        assert int(_pragma(con, "user_version")) == SqliteDB.SCHEMA_VERSION
    db.init_schema()


def test_invalid_sqlite_knobs_fail_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STAKEPOOL_SQLITE_SYNCHRONOUS", "OFF")
    with pytest.raises(ValueError):
        SqliteTuning.from_env()

    monkeypatch.setenv("STAKEPOOL_SQLITE_SYNCHRONOUS", "extra")
    monkeypatch.setenv("STAKEPOOL_SQLITE_BUSY_TIMEOUT_MS", "soon")
    with pytest.raises(ValueError):
        SqliteTuning.from_env()

    monkeypatch.setenv("STAKEPOOL_SQLITE_BUSY_TIMEOUT_MS", "50")
    t = SqliteTuning.from_env()
    assert (t.synchronous, t.busy_timeout_ms) == ("EXTRA", 50)


def test_initialize_only_seeds_an_empty_store(tmp_path: Path) -> None:
    store = SqlitePoolStore(db=SqliteDB(path=str(tmp_path / "pool.db")))
    assert store.exists() is False
    assert store.initialize(config=_config(), genesis_block=7) is True

    other = PoolConfig(owner="someone-else", capacity=5, minimum_stake=1, cycle_length=3, reward_rate_per_block=1)
    assert store.initialize(config=other, genesis_block=99) is False

    assert store.read_config().owner == "admin"
    st = store.read_state()
    assert (st.current_cycle, st.cycle_start_block) == (1, 7)


def test_unit_of_work_discards_writes_on_error(tmp_path: Path) -> None:
    store = SqlitePoolStore(db=SqliteDB(path=str(tmp_path / "pool.db")))
    store.initialize(config=_config(), genesis_block=0)

    with pytest.raises(ZeroDivisionError):
        with store.unit_of_work() as uow:
            uow.state.total_staked = 42
            uow.config.capacity = 1
            1 / 0

    assert store.read_state().total_staked == 0
    assert store.read_config().capacity == 10**9


def _join_worker(db_path: str, prefix: str, n: int) -> None:
    store = SqlitePoolStore(db=SqliteDB(path=db_path))
    bank = MemoryBalances()
    ctl = PoolController(store=store, transfer=bank, clock=ManualBlockClock(height=0))
    for i in range(int(n)):
        acct = f"{prefix}-{i}"
        bank.credit(acct, 1)
        ctl.join(acct, 1)


def test_concurrent_joins_from_processes_keep_totals_exact(tmp_path: Path) -> None:
    """Several processes join distinct accounts against one database file.

    BEGIN IMMEDIATE serializes the read-modify-write of PoolState; the final
    total must equal the number of joins exactly.
    """
    db_path = str(tmp_path / "pool_concurrency.db")
    store = SqlitePoolStore(db=SqliteDB(path=db_path))
    store.initialize(config=_config(), genesis_block=0)

    ctx = mp.get_context("fork")
    procs = []
    workers = 4
    per = 40
    for w in range(workers):
        pr = ctx.Process(target=_join_worker, args=(db_path, f"w{w}", per))
        pr.start()
        procs.append(pr)

    for pr in procs:
        pr.join(60)
        assert pr.exitcode == 0

    assert store.read_state().total_staked == workers * per
    with store.read_view() as view:
        assert view.stakers.count_active() == workers * per
