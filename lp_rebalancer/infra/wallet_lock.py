"""
Wallet-level single-flight coordinator.

Provides one asyncio.Lock per wallet identity. Every signed submission for a
wallet happens under its lock, and a rebalancing cycle claims the wallet with
``try_claim`` so two cycles never act on the same wallet at once.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from lp_rebalancer.core.errors import CycleInProgressError


class WalletLockCoordinator:
    def __init__(self) -> None:
        # wallet -> submission lock (serializes freshness-token use)
        self._locks: Dict[str, asyncio.Lock] = {}
        # wallet -> cycle lock (single-flight per wallet)
        self._cycle_locks: Dict[str, asyncio.Lock] = {}
        self._guard = asyncio.Lock()

    async def get_lock(self, wallet: str) -> asyncio.Lock:
        """Return the shared submission lock for ``wallet``."""
        async with self._guard:
            lock = self._locks.get(wallet)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[wallet] = lock
            return lock

    async def _get_cycle_lock(self, wallet: str) -> asyncio.Lock:
        async with self._guard:
            lock = self._cycle_locks.get(wallet)
            if lock is None:
                lock = asyncio.Lock()
                self._cycle_locks[wallet] = lock
            return lock

    def cycle_in_flight(self, wallet: str) -> bool:
        lock = self._cycle_locks.get(wallet)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def try_claim(self, wallet: str) -> AsyncIterator[None]:
        """Claim ``wallet`` for one cycle or raise CycleInProgressError."""
        lock = await self._get_cycle_lock(wallet)
        # No await between the check and acquire, so the claim is atomic on the loop.
        if lock.locked():
            raise CycleInProgressError(f"cycle already running for wallet {wallet}")
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
