import asyncio


class PlayerCounter:
    """
    Process-wide count of connections that are holding for an opponent or
    playing. The lobby increments it on admission and every session
    decrements it on exit; all access goes through one lock.
    """

    def __init__(self):
        self._count = 0
        self._changed = asyncio.Condition()

    @property
    def value(self) -> int:
        """Unlocked snapshot, for log lines and test polling only. Use get() otherwise."""
        return self._count

    async def get(self) -> int:
        async with self._changed:
            return self._count

    async def increment(self, n: int = 1) -> int:
        async with self._changed:
            self._count += n
            self._changed.notify_all()
            return self._count

    async def decrement(self, n: int = 1) -> int:
        async with self._changed:
            if n > self._count:
                raise ValueError(f"cannot remove {n} players from {self._count}")
            self._count -= n
            self._changed.notify_all()
            return self._count

    async def wait_below(self, ceiling: int) -> int:
        """Block until fewer than `ceiling` players are counted."""
        async with self._changed:
            await self._changed.wait_for(lambda: self._count < ceiling)
            return self._count
