# src/stakepool/runtime/pool_boot.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from stakepool.runtime.clock import BlockClock, ManualBlockClock
from stakepool.runtime.controller import PoolController
from stakepool.runtime.pool_config import PoolSettings, load_pool_settings
from stakepool.runtime.pool_logging import log_event
from stakepool.runtime.sqlite_db import SqliteDB, SqlitePoolStore
from stakepool.runtime.transfer import MemoryBalances, ValueTransfer


@dataclass
class PoolRuntime:
    settings: PoolSettings
    controller: PoolController
    clock: BlockClock
    transfer: ValueTransfer


def build_runtime(
    settings: Optional[PoolSettings] = None,
    *,
    clock: Optional[BlockClock] = None,
    transfer: Optional[ValueTransfer] = None,
) -> PoolRuntime:
    """
    Build a PoolController from explicit settings or, if omitted, from
    STAKEPOOL_CONFIG_PATH / defaults.

    The settings seed PoolConfig only when the database is empty. With no host
    ledger injected, the block clock starts at the genesis block (or the open
    cycle on restart) and balances live in memory.
    """
    s = settings or load_pool_settings()

    db_path = os.environ.get("STAKEPOOL_DB_PATH") or s.db_path
    store = SqlitePoolStore(db=SqliteDB(path=db_path))
    created = store.initialize(config=s.genesis_pool_config(), genesis_block=int(s.genesis_block))

    # A restarted dev node resumes no earlier than the open cycle.
    clk = clock or ManualBlockClock(height=max(int(s.genesis_block), store.read_state().cycle_start_block))
    xfer = transfer or MemoryBalances()

    ctl = PoolController(store=store, transfer=xfer, clock=clk, pool_id=s.pool_id)
    log_event(
        logging.getLogger("stakepool.pool"),
        "pool_boot",
        pool_id=s.pool_id,
        mode=s.mode,
        db_path=db_path,
        created=created,
        block=clk.height(),
    )
    return PoolRuntime(settings=s, controller=ctl, clock=clk, transfer=xfer)
