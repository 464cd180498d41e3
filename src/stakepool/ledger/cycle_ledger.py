# src/stakepool/ledger/cycle_ledger.py
from __future__ import annotations

import json
import sqlite3
import time
from typing import List, Optional

from stakepool.ledger.types import CycleRecord
from stakepool.runtime.errors import CycleAlreadySealed, InvariantViolation


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: object) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class CycleLedger:
    """Per-cycle aggregate records keyed by a strictly increasing cycle id.

    A sealed record (complete=True) is never rewritten: ``seal`` refuses a
    second call and ``create`` refuses an existing id.
    """

    def __init__(self, con: sqlite3.Connection) -> None:
        self._con = con

    def get(self, cycle_id: int) -> Optional[CycleRecord]:
        row = self._con.execute(
            "SELECT record_json FROM cycles WHERE cycle_id=? LIMIT 1;",
            (int(cycle_id),),
        ).fetchone()
        if row is None:
            return None
        return CycleRecord.from_json(json.loads(str(row["record_json"])))

    def latest_id(self) -> int:
        row = self._con.execute("SELECT MAX(cycle_id) AS c FROM cycles;").fetchone()
        return int(row["c"]) if (row is not None and row["c"] is not None) else 0

    def create(self, cycle_id: int, start_block: int, *, cycle_length: int, reward_rate_per_block: int) -> CycleRecord:
        cid = int(cycle_id)
        latest = self.latest_id()
        if latest and cid != latest + 1:
            raise ValueError(f"cycle ids must increase by 1: latest={latest} requested={cid}")
        if int(cycle_length) <= 0:
            raise ValueError(f"cycle_length must be > 0; got {cycle_length}")

        rec = CycleRecord.open(
            cycle_id=cid,
            start_block=int(start_block),
            cycle_length=int(cycle_length),
            reward_rate_per_block=int(reward_rate_per_block),
        )
        # Plain INSERT: an existing id is an integrity error, never an overwrite.
        self._con.execute(
            "INSERT INTO cycles(cycle_id, start_block, record_json, complete, updated_ts_ms) VALUES(?, ?, ?, 0, ?);",
            (cid, int(rec.start_block), _canon_json(rec.to_json()), _now_ms()),
        )
        return rec

    def seal(self, cycle_id: int, total_staked: int, total_rewards: int) -> CycleRecord:
        rec = self.get(cycle_id)
        if rec is None:
            raise InvariantViolation(f"cycle {cycle_id} does not exist")
        if rec.complete:
            raise CycleAlreadySealed("cycle_sealed", {"cycle_id": int(cycle_id)})

        rec.total_staked = int(total_staked)
        rec.total_rewards = int(total_rewards)
        rec.complete = True
        self._con.execute(
            "UPDATE cycles SET record_json=?, complete=1, updated_ts_ms=? WHERE cycle_id=? AND complete=0;",
            (_canon_json(rec.to_json()), _now_ms(), int(cycle_id)),
        )
        return rec

    def range(self, first_id: int, last_id: int) -> List[CycleRecord]:
        rows = self._con.execute(
            "SELECT record_json FROM cycles WHERE cycle_id BETWEEN ? AND ? ORDER BY cycle_id;",
            (int(first_id), int(last_id)),
        ).fetchall()
        return [CycleRecord.from_json(json.loads(str(r["record_json"]))) for r in rows]

    def find_containing(self, height: int) -> Optional[CycleRecord]:
        """Return the cycle whose block range contains ``height``.

        The open cycle covers every height from its start until it is rolled,
        even past its nominal end block.
        """
        row = self._con.execute(
            "SELECT record_json FROM cycles WHERE start_block <= ? ORDER BY cycle_id DESC LIMIT 1;",
            (int(height),),
        ).fetchone()
        if row is None:
            return None
        rec = CycleRecord.from_json(json.loads(str(row["record_json"])))
        if rec.complete and not rec.contains(height):
            return None
        return rec
