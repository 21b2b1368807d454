import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class PlayerLocks:
    """One asyncio lock per player.

    Locks are held weakly and disappear once no pull references them. Pulls of
    different players never share a lock.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, player_id: int) -> asyncio.Lock:
        lock = self._locks.get(player_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[player_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, player_id: int) -> AsyncIterator[None]:
        lock = self.get(player_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


player_locks = PlayerLocks()


def get_player_locks() -> PlayerLocks:
    return player_locks
