"""Per-key asyncio locks that are pruned once nobody holds or waits on them."""
from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLock:
    """Serialize work per key while letting different keys run concurrently."""

    def __init__(self) -> None:
        self._slots: Dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                self._slots.pop(key, None)

    @asynccontextmanager
    async def hold_many(self, *keys: Optional[str]) -> AsyncIterator[None]:
        """Hold several keys at once, always acquired in sorted order."""

        async with AsyncExitStack() as stack:
            for key in sorted({key for key in keys if key}):
                await stack.enter_async_context(self.hold(key))
            yield

    def __len__(self) -> int:
        return len(self._slots)
