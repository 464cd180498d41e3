# src/stakepool/runtime/transfer.py
from __future__ import annotations

import threading
from typing import Dict, Optional, Protocol


class ValueTransfer(Protocol):
    """Host value-transfer primitive.

    Moves ``amount`` from ``src`` to ``dst`` atomically and reports success. A
    ``False`` result means nothing moved.
    """

    def transfer(self, src: str, dst: str, amount: int) -> bool: ...


class MemoryBalances:
    """Account balances held in process memory.

    Stands in for the host's transfer primitive on dev nodes and in tests.
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None) -> None:
        self._balances: Dict[str, int] = {str(k): int(v) for k, v in (balances or {}).items()}
        self._lock = threading.Lock()

    def balance(self, account: str) -> int:
        with self._lock:
            return int(self._balances.get(str(account), 0))

    def credit(self, account: str, amount: int) -> int:
        a = int(amount)
        if a < 0:
            raise ValueError(f"credit amount must be >= 0; got {a}")
        with self._lock:
            self._balances[str(account)] = int(self._balances.get(str(account), 0)) + a
            return self._balances[str(account)]

    def transfer(self, src: str, dst: str, amount: int) -> bool:
        a = int(amount)
        if a < 0:
            return False
        if a == 0:
            return True
        with self._lock:
            have = int(self._balances.get(str(src), 0))
            if have < a:
                return False
            self._balances[str(src)] = have - a
            self._balances[str(dst)] = int(self._balances.get(str(dst), 0)) + a
            return True

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._balances)
