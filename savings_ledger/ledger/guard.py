"""
Single-flight guard for mutating goal operations.

At most one contribute/refund/delete runs per goal at a time. A second
caller is turned away immediately instead of queueing, so a double tap
in a UI never applies a contribution twice.

Accounts are shared between goals, so they are serialized instead:
operations on different goals that move money through the same account
wait for each other, and re-read balances once they hold the account.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
from typing import AsyncIterator, Hashable, Iterator

from savings_ledger.ledger.errors import ConcurrentOperationInProgressError


class SingleFlight:
    """Set of keys with an operation in flight, plus per-account locks."""

    def __init__(self):
        self._in_flight: set[Hashable] = set()
        self._account_locks: dict[Hashable, asyncio.Lock] = {}
        self._account_users: dict[Hashable, int] = {}

    def is_busy(self, key: Hashable) -> bool:
        return key in self._in_flight

    def is_account_held(self, account_id: Hashable) -> bool:
        return account_id in self._account_locks

    @contextmanager
    def claim(self, key: Hashable) -> Iterator[None]:
        """
        Hold key for the duration of the block.

        The check and the add happen without an await in between,
        so under asyncio the claim is atomic.
        """
        if key in self._in_flight:
            raise ConcurrentOperationInProgressError(
                "Another operation on this goal is already in progress"
            )
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    @asynccontextmanager
    async def _hold(self, account_id: Hashable) -> AsyncIterator[None]:
        # Locks only live while someone holds or waits for them
        lock = self._account_locks.get(account_id)
        if lock is None:
            lock = self._account_locks[account_id] = asyncio.Lock()
        self._account_users[account_id] = self._account_users.get(account_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._account_users[account_id] -= 1
            if not self._account_users[account_id]:
                del self._account_users[account_id]
                del self._account_locks[account_id]

    @asynccontextmanager
    async def hold_accounts(self, *account_ids: Hashable) -> AsyncIterator[None]:
        """
        Wait for and hold every account for the duration of the block.

        Accounts are taken in a fixed order so overlapping holders
        cannot deadlock.
        """
        async with AsyncExitStack() as stack:
            for account_id in sorted(set(account_ids), key=str):
                await stack.enter_async_context(self._hold(account_id))
            yield
