# src/stakepool/ledger/constants.py
from __future__ import annotations

"""Pool accounting constants.

Units:
- All amounts (stake, rewards, penalties) are integer base units.
- Block heights are supplied by the host chain and are 0-indexed.
"""

# Fixed-point scale used when reporting a staker's share of a cycle (parts per million).
SHARE_SCALE: int = 10**6

# Basis points denominator for penalties.
BPS_DENOMINATOR: int = 10_000

# The first cycle opened by a fresh pool.
GENESIS_CYCLE_ID: int = 1

# Cross-cycle reward attribution modes.
ATTRIBUTION_SEALED: str = "sealed"
ATTRIBUTION_PRORATE: str = "prorate"
ATTRIBUTION_MODES = (ATTRIBUTION_SEALED, ATTRIBUTION_PRORATE)

# Canonical custody account for staked principal and reward reserves.
POOL_ACCOUNT_ID: str = "POOL"
