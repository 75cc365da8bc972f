"""Abstract base classes — storage backends must implement these interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any


class KeyPrefixStore(ABC):
    """Document store addressed by opaque string keys, with prefix scans.

    Values are JSON-compatible documents. ``get_by_prefix`` returns values
    only; callers recover keys from identity fields embedded in the values.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored under ``key`` or ``None``."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def get_by_prefix(self, prefix: str) -> list[Any]:
        """Values of every key starting with ``prefix``, ordered by key."""
        ...

    async def mget(self, keys: Sequence[str]) -> list[Any | None]:
        return [await self.get(k) for k in keys]

    async def mset(self, items: Mapping[str, Any]) -> None:
        for key, value in items.items():
            await self.set(key, value)

    async def mdel(self, keys: Sequence[str]) -> None:
        for key in keys:
            await self.delete(key)

    async def ping(self) -> bool:
        return True
