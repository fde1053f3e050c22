"""
TTLCache: явный кэш значения с временем жизни (без глобального состояния).
Передаётся в сервисы через конструктор; в тестах подменяется фиксированным значением.
"""
import time
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    def __init__(
        self,
        loader: Callable[[], T],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self.ttl = ttl_seconds
        self._clock = clock
        self.value: T | None = None
        self.fetched_at: float | None = None

    def is_stale(self) -> bool:
        if self.fetched_at is None:
            return True
        return self._clock() - self.fetched_at >= self.ttl

    def get(self) -> T:
        if self.is_stale():
            self.value = self._loader()
            self.fetched_at = self._clock()
        return self.value

    def invalidate(self) -> None:
        self.fetched_at = None
