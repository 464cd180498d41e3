from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Optional

import pytest

# Ensure local "src/" takes precedence over any globally-installed "stakepool" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


POOL_RESERVE = 10**12


@pytest.fixture(autouse=True)
def _pool_env(monkeypatch: pytest.MonkeyPatch):
    from stakepool.runtime import metrics

    monkeypatch.setenv("STAKEPOOL_MODE", "dev")
    monkeypatch.setenv("STAKEPOOL_CHECK_INVARIANTS", "1")
    for k in ("STAKEPOOL_CONFIG_PATH", "STAKEPOOL_DB_PATH", "STAKEPOOL_METRICS_ENABLED", "STAKEPOOL_DOTENV_PATH"):
        monkeypatch.delenv(k, raising=False)
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def make_pool(tmp_path: Path):
    """Factory for a fresh pool on its own SQLite file.

    Keyword overrides go into the genesis PoolConfig. The pool account starts
    with POOL_RESERVE so rewards can be paid; ``balances`` seeds staker wallets.
    """
    from stakepool.ledger.types import PoolConfig
    from stakepool.runtime.clock import ManualBlockClock
    from stakepool.runtime.controller import PoolController
    from stakepool.runtime.sqlite_db import SqliteDB, SqlitePoolStore
    from stakepool.runtime.transfer import MemoryBalances

    counter = {"n": 0}

    def _make(
        *,
        genesis_block: int = 0,
        balances: Optional[Dict[str, int]] = None,
        pool_reserve: int = POOL_RESERVE,
        **overrides: Any,
    ) -> SimpleNamespace:
        counter["n"] += 1
        cfg: Dict[str, Any] = {
            "owner": "admin",
            "capacity": 1_000_000,
            "minimum_stake": 1,
            "cycle_length": 10,
            "reward_rate_per_block": 10,
            "minimum_lock_period": 0,
            "emergency_penalty_bps": 0,
            "attribution": "sealed",
            "pool_account": "POOL",
        }
        cfg.update(overrides)

        store = SqlitePoolStore(db=SqliteDB(path=str(tmp_path / f"pool_{counter['n']}.db")))
        store.initialize(config=PoolConfig(**cfg), genesis_block=genesis_block)

        bank = MemoryBalances(dict(balances or {}))
        bank.credit(cfg["pool_account"], pool_reserve)
        clock = ManualBlockClock(height=genesis_block)
        ctl = PoolController(store=store, transfer=bank, clock=clock, pool_id="test-pool")
        return SimpleNamespace(ctl=ctl, clock=clock, bank=bank, store=store)

    return _make
