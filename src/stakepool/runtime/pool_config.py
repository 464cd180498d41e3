# src/stakepool/runtime/pool_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from stakepool.ledger.constants import ATTRIBUTION_MODES, ATTRIBUTION_SEALED, BPS_DENOMINATOR, POOL_ACCOUNT_ID
from stakepool.ledger.types import PoolConfig

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


@dataclass(frozen=True)
class PoolSettings:
    pool_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Single SQLite DB file path for all pool persistence.
    db_path: str

    # Genesis values for PoolConfig. Used only when the DB is empty.
    owner: str
    pool_account: str
    capacity: int
    minimum_stake: int
    cycle_length: int
    reward_rate_per_block: int
    minimum_lock_period: int
    emergency_penalty_bps: int
    attribution: str
    genesis_block: int

    api_host: str
    api_port: int

    log_level: str

    def genesis_pool_config(self) -> PoolConfig:
        return PoolConfig(
            owner=self.owner,
            capacity=int(self.capacity),
            minimum_stake=int(self.minimum_stake),
            cycle_length=int(self.cycle_length),
            reward_rate_per_block=int(self.reward_rate_per_block),
            active=True,
            minimum_lock_period=int(self.minimum_lock_period),
            emergency_penalty_bps=int(self.emergency_penalty_bps),
            attribution=self.attribution,
            pool_account=self.pool_account,
        )


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_pool_settings(cfg: PoolSettings) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.pool_id, str) or not cfg.pool_id.strip():
        raise ValueError("pool_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if not isinstance(cfg.owner, str) or not cfg.owner.strip():
        raise ValueError("owner must be a non-empty string")

    if not isinstance(cfg.pool_account, str) or not cfg.pool_account.strip():
        raise ValueError("pool_account must be a non-empty string")

    if cfg.pool_account == cfg.owner:
        raise ValueError("pool_account must differ from owner")

    if int(cfg.minimum_stake) <= 0:
        raise ValueError(f"minimum_stake must be > 0; got: {cfg.minimum_stake}")

    if int(cfg.capacity) < int(cfg.minimum_stake):
        raise ValueError(f"capacity must be >= minimum_stake; got: {cfg.capacity} < {cfg.minimum_stake}")

    if int(cfg.cycle_length) <= 0:
        raise ValueError(f"cycle_length must be > 0; got: {cfg.cycle_length}")

    if int(cfg.reward_rate_per_block) < 0:
        raise ValueError(f"reward_rate_per_block must be >= 0; got: {cfg.reward_rate_per_block}")

    if int(cfg.minimum_lock_period) < 0:
        raise ValueError(f"minimum_lock_period must be >= 0; got: {cfg.minimum_lock_period}")

    if not 0 <= int(cfg.emergency_penalty_bps) <= BPS_DENOMINATOR:
        raise ValueError(f"emergency_penalty_bps must be 0..{BPS_DENOMINATOR}; got: {cfg.emergency_penalty_bps}")

    if cfg.attribution not in ATTRIBUTION_MODES:
        raise ValueError(f"attribution must be one of {ATTRIBUTION_MODES}; got: {cfg.attribution!r}")

    if int(cfg.genesis_block) < 0:
        raise ValueError(f"genesis_block must be >= 0; got: {cfg.genesis_block}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")


def default_pool_settings() -> PoolSettings:
    return PoolSettings(
        pool_id="stakepool-dev",
        # Production-safe default: never drop into dev conveniences silently.
        mode="prod",
        db_path="./data/stakepool.db",
        owner="admin",
        pool_account=POOL_ACCOUNT_ID,
        capacity=1_000_000_000,
        minimum_stake=1_000,
        cycle_length=144,
        reward_rate_per_block=1_000,
        minimum_lock_period=0,
        emergency_penalty_bps=1_000,
        attribution=ATTRIBUTION_SEALED,
        genesis_block=0,
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def read_pool_settings_file(path: str) -> PoolSettings:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("pool config must be a JSON object")

    d = default_pool_settings()

    cfg = PoolSettings(
        pool_id=_as_str(raw.get("pool_id"), d.pool_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        owner=_as_str(raw.get("owner"), d.owner),
        pool_account=_as_str(raw.get("pool_account"), d.pool_account),
        capacity=_as_int(raw.get("capacity"), d.capacity),
        minimum_stake=_as_int(raw.get("minimum_stake"), d.minimum_stake),
        cycle_length=_as_int(raw.get("cycle_length"), d.cycle_length),
        reward_rate_per_block=_as_int(raw.get("reward_rate_per_block"), d.reward_rate_per_block),
        minimum_lock_period=_as_int(raw.get("minimum_lock_period"), d.minimum_lock_period),
        emergency_penalty_bps=_as_int(raw.get("emergency_penalty_bps"), d.emergency_penalty_bps),
        attribution=_as_str(raw.get("attribution"), d.attribution).strip().lower(),
        genesis_block=_as_int(raw.get("genesis_block"), d.genesis_block),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )

    validate_pool_settings(cfg)
    return cfg


def load_pool_settings(*, config_path: Optional[str] = None) -> PoolSettings:
    p = config_path or os.environ.get("STAKEPOOL_CONFIG_PATH")
    if p:
        return read_pool_settings_file(p)

    cfg = default_pool_settings()
    validate_pool_settings(cfg)
    return cfg


def apply_pool_settings_to_env(cfg: PoolSettings) -> None:
    validate_pool_settings(cfg)
    os.environ["STAKEPOOL_POOL_ID"] = cfg.pool_id
    os.environ["STAKEPOOL_MODE"] = (cfg.mode or "prod").strip().lower()
    os.environ["STAKEPOOL_DB_PATH"] = cfg.db_path
    os.environ["STAKEPOOL_LOG_LEVEL"] = cfg.log_level
    os.environ["STAKEPOOL_API_HOST"] = cfg.api_host
    os.environ["STAKEPOOL_API_PORT"] = str(int(cfg.api_port))
