# src/stakepool/ledger/staker_ledger.py
from __future__ import annotations

import json
import sqlite3
import time
from typing import Iterator, Optional, Tuple

from stakepool.ledger.types import StakerRecord


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: object) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StakerLedger:
    """Per-account staking records keyed by account id.

    Pure store: no validation beyond schema decoding. Callers hand in a
    connection that is already inside the right transaction (or a read-only
    connection for queries); this class never commits.
    """

    def __init__(self, con: sqlite3.Connection) -> None:
        self._con = con

    def get(self, account: str) -> Optional[StakerRecord]:
        row = self._con.execute(
            "SELECT record_json FROM stakers WHERE account=? LIMIT 1;",
            (str(account),),
        ).fetchone()
        if row is None:
            return None
        return StakerRecord.from_json(json.loads(str(row["record_json"])))

    def upsert(self, account: str, record: StakerRecord) -> None:
        acct = str(account or "").strip()
        if not acct:
            raise ValueError("staker account must be a non-empty string")
        self._con.execute(
            """
            INSERT INTO stakers(account, record_json, active, staked_amount, updated_ts_ms)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(account) DO UPDATE SET
              record_json=excluded.record_json,
              active=excluded.active,
              staked_amount=excluded.staked_amount,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (acct, _canon_json(record.to_json()), 1 if record.active else 0, int(record.staked_amount), _now_ms()),
        )

    def items(self) -> Iterator[Tuple[str, StakerRecord]]:
        rows = self._con.execute("SELECT account, record_json FROM stakers ORDER BY account;").fetchall()
        for row in rows:
            yield str(row["account"]), StakerRecord.from_json(json.loads(str(row["record_json"])))

    def count_active(self) -> int:
        row = self._con.execute("SELECT COUNT(*) AS n FROM stakers WHERE active=1;").fetchone()
        return int(row["n"]) if row is not None else 0
