"""TTL cache for product pricing lists."""
from __future__ import annotations

from typing import Generic, List, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class PricingCache(Generic[T]):
    """Active pricing rows keyed by product id, dropped whenever a row changes."""

    def __init__(self, ttl: int, maxsize: int = 512) -> None:
        self._cache: TTLCache[int, List[T]] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, product_id: int) -> Optional[List[T]]:
        return self._cache.get(product_id)

    def store(self, product_id: int, rows: List[T]) -> List[T]:
        self._cache[product_id] = list(rows)
        return rows

    def invalidate(self, product_id: int) -> None:
        self._cache.pop(product_id, None)

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, product_id: int) -> bool:
        return product_id in self._cache
