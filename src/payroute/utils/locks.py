"""Concurrency control for route execution.

Provides per-address locking so two executions never race on the same
source address's nonce sequence. Each registry owns its locks; there is no
module-level state.

Locks taken through hold() are reference counted and dropped once the last
holder or waiter leaves, so a long-lived registry only tracks addresses that
are in use.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from payroute.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class AddressLockRegistry:
    """Registry of asyncio locks keyed by source address.

    Example:
        locks = AddressLockRegistry()
        async with locks.hold(address, timeout=30, operation="execute_route"):
            # Submit steps for this address
            ...
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._registry_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    @staticmethod
    def _key(address: str) -> str:
        return address.lower() if address.startswith("0x") else address

    async def get_lock(self, address: str) -> asyncio.Lock:
        """Get or create the lock for an address.

        Locks fetched here are not reference counted; they stay until clear().

        Args:
            address: Source address (EVM addresses are case-insensitive)

        Returns:
            asyncio.Lock for the address
        """
        async with self._registry_lock:
            key = self._key(address)
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    def is_locked(self, address: str) -> bool:
        lock = self._locks.get(self._key(address))
        return lock is not None and lock.locked()

    async def _enter(self, key: str) -> asyncio.Lock:
        async with self._registry_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return self._locks[key]

    def _leave(self, key: str) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining > 0:
            self._users[key] = remaining
            return
        self._users.pop(key, None)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    @asynccontextmanager
    async def hold(
        self,
        address: str,
        timeout: Optional[float] = 30.0,
        operation: str = "execution",
    ):
        """Hold the address lock for the duration of the block.

        Args:
            address: Source address
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description for logging

        Raises:
            LockTimeoutError: lock not acquired within timeout
        """
        key = self._key(address)
        lock = await self._enter(key)

        try:
            try:
                if timeout:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
                else:
                    await lock.acquire()
            except asyncio.TimeoutError:
                logger.warning(f"Lock timeout for {address} after {timeout}s: {operation}")
                raise LockTimeoutError(f"Could not acquire lock for {address} within {timeout}s")

            logger.debug(f"Lock acquired for {address}: {operation}")
            try:
                yield
            finally:
                lock.release()
                logger.debug(f"Lock released for {address}: {operation}")
        finally:
            self._leave(key)

    def clear(self) -> None:
        """Forget every lock that is neither held nor waited on."""
        self._locks = {k: v for k, v in self._locks.items() if v.locked() or k in self._users}
