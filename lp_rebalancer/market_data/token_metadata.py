"""
TokenMetadataCache: memoized token decimals lookups.

Resolution order for ``get_decimals(asset, program)``:
1. In-memory cache keyed by (asset, program)
2. Well-known assets table (no remote call)
3. Ledger client mint lookup

A failed remote lookup caches DEFAULT_DECIMALS so a broken mint does not cost
one RPC per call for the rest of the process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from lp_rebalancer.core.context import NATIVE_MINT, TOKEN_PROGRAM_ID
from lp_rebalancer.core.errors import ConfigurationError
from lp_rebalancer.infra.logging_cfg import log_event

DEFAULT_DECIMALS = 6

KNOWN_DECIMALS: Dict[str, int] = {
    NATIVE_MINT: 9,
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": 6,  # USDC
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": 6,  # USDT
    "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E": 6,  # BTC (wormhole)
    "2FPyTwcZLUg1MDrwsyoP4D6s1tM7hAkHYRjkNb5w6Pxk": 6,  # ETH (wormhole)
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R": 6,  # RAY
    "SRMuApVNdxXokk5GT7XD5cUUgXMBCoAz2LHeuAoKWRt": 6,   # SRM
}


class TokenMetadataCache:
    """
    Process-lifetime decimals cache in front of the ledger client.

    Concurrent lookups of the same key may both reach the ledger; the second
    insert overwrites the first with the same value, which is harmless.
    """

    def __init__(self, ledger, logger: Optional[logging.Logger] = None) -> None:
        self.ledger = ledger
        self.log = logger or logging.getLogger("lprebal")
        self._cache: Dict[Tuple[str, str], int] = {}
        self._remote_calls = 0

    @staticmethod
    def known_decimals(asset_id: str) -> Optional[int]:
        return KNOWN_DECIMALS.get(asset_id)

    async def get_decimals(self, asset_id: str, program_id: str = TOKEN_PROGRAM_ID) -> int:
        if not asset_id or not isinstance(asset_id, str):
            raise ConfigurationError(f"invalid asset id: {asset_id!r}")
        key = (asset_id, program_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        known = self.known_decimals(asset_id)
        if known is not None:
            self._cache[key] = known
            return known

        self._remote_calls += 1
        try:
            decimals = int(await self.ledger.get_mint_decimals(asset_id, program_id))
        except Exception as exc:
            log_event(
                self.log,
                "decimals_lookup_failed",
                level=logging.WARNING,
                asset=asset_id,
                program=program_id,
                default=DEFAULT_DECIMALS,
                error=str(exc),
            )
            decimals = DEFAULT_DECIMALS
        self._cache[key] = decimals
        return decimals

    async def get_many_decimals(
        self, asset_ids: Iterable[str], program_id: str = TOKEN_PROGRAM_ID
    ) -> Dict[str, int]:
        """Resolve several assets in parallel. Never raises for remote failures."""
        ids: List[str] = list(dict.fromkeys(asset_ids))
        results = await asyncio.gather(*(self.get_decimals(a, program_id) for a in ids))
        return dict(zip(ids, results))

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> dict:
        return {
            "size": len(self._cache),
            "keys": [f"{asset}_{program}" for asset, program in self._cache],
            "remote_calls": self._remote_calls,
        }
