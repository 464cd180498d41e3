# src/stakepool/runtime/clock.py
from __future__ import annotations

import threading
from typing import Protocol


class BlockClock(Protocol):
    """Host-supplied, append-only block counter."""

    def height(self) -> int: ...


class ManualBlockClock:
    """In-process block counter for tests and dev nodes.

    Heights only move forward; a host chain never rewinds its tip.
    """

    def __init__(self, height: int = 0) -> None:
        if int(height) < 0:
            raise ValueError(f"height must be >= 0; got {height}")
        self._height = int(height)
        self._lock = threading.Lock()

    def height(self) -> int:
        with self._lock:
            return self._height

    def advance(self, blocks: int = 1) -> int:
        n = int(blocks)
        if n < 0:
            raise ValueError(f"cannot advance by a negative block count: {n}")
        with self._lock:
            self._height += n
            return self._height

    def set(self, height: int) -> int:
        h = int(height)
        with self._lock:
            if h < self._height:
                raise ValueError(f"block height is append-only: have={self._height} requested={h}")
            self._height = h
            return self._height
