"""
페어별 가격 이력 링버퍼 (RSI 계산용, 메모리 보관)
"""

import asyncio
from collections import deque
from typing import Deque, Dict, List, Tuple


class PriceHistory:
    """페어별 최근 가격 (최대 capacity 개, 오래된 것부터 제거)"""

    def __init__(self, capacity: int = 100):
        if capacity < 2:
            raise ValueError("capacity must be at least 2")
        self.capacity = capacity
        self._windows: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, pair: str) -> asyncio.Lock:
        lock = self._locks.get(pair)
        if lock is None:
            lock = self._locks[pair] = asyncio.Lock()
        return lock

    async def append(self, pair: str, price: float) -> Tuple[float, List[float]]:
        """
        가격 추가

        Returns:
            (직전 가격, 추가 후 이력 스냅샷) - 직전 가격이 없으면 현재가
        """
        async with self._lock_for(pair):
            window = self._windows.setdefault(pair, deque(maxlen=self.capacity))
            previous = window[-1] if window else price
            window.append(price)
            return previous, list(window)

    def snapshot(self, pair: str) -> List[float]:
        return list(self._windows.get(pair, ()))

    def __len__(self) -> int:
        return len(self._windows)
