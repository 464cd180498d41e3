from __future__ import annotations

"""Pydantic request schemas for the pool API.

The caller account travels in the body. Authenticating it is the host's job;
these models only validate shape.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class CallerRequest(BaseModel):
    caller: str = Field(..., min_length=1, description="Account id of the caller, e.g. @alice")


class JoinRequest(CallerRequest):
    amount: int = Field(..., description="Stake amount in base units")


class RollRequest(BaseModel):
    caller: Optional[str] = Field(default=None, description="Optional account id; roll-over is permissionless")
    catch_up: bool = Field(default=False, description="Roll every cycle whose boundary has passed")
    max_cycles: int = Field(default=1_000, ge=1, description="Upper bound on cycles rolled when catch_up is set")


class AdminConfigRequest(CallerRequest):
    field: str = Field(..., min_length=1, description="PoolConfig field to change")
    value: Any = Field(..., description="New value")


class AdvanceBlocksRequest(BaseModel):
    blocks: int = Field(default=1, ge=0, description="Blocks to advance the manual clock by")


class CreditRequest(BaseModel):
    account: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)
