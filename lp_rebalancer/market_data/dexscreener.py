"""
Market data provider client (ranking crawl + DexScreener token profiles).

Endpoints:
    rank:    GET {market_data_url}/pairs?rankBy={key}&page={page}
             -> {"data": [{"pool", "base", "quote", "labels", "chain", "protocol"}, ...]}
    profile: GET {profile_api_url}/tokens/v1/{chain}/{a,b,c}
             -> [{"pairAddress", "baseToken": {...}, "volume": {...}, "liquidity": {...}}, ...]

Responses are decoded into RankedPair / Profile records here; a response that
cannot be decoded raises ParseError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional, Sequence

import httpx

from lp_rebalancer.core.errors import ConfigurationError, ParseError, TransientError
from lp_rebalancer.core.models import Profile, RankedPair
from lp_rebalancer.core.utils import to_float_safe
from lp_rebalancer.infra.logging_cfg import log_event

MAX_PROFILE_BATCH = 30


class RateLimiter:
    """Sliding-window limiter: at most ``max_requests`` per ``period_seconds``."""

    def __init__(self, max_requests: int, period_seconds: float) -> None:
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: List[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            self._timestamps = [t for t in self._timestamps if now - t < self._period]
            if len(self._timestamps) >= self._max:
                sleep_time = self._period - (now - self._timestamps[0]) + 0.1
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
            self._timestamps.append(time.monotonic())


class MarketDataClient:
    def __init__(
        self,
        market_data_url: str,
        profile_api_url: str = "https://api.dexscreener.com",
        chain_id: str = "solana",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[RateLimiter] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.market_data_url = market_data_url.rstrip("/")
        self.profile_api_url = profile_api_url.rstrip("/")
        self.chain_id = chain_id
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True
        # DexScreener allows 300 req/min; stay under it.
        self.limiter = limiter or RateLimiter(max_requests=250, period_seconds=60)
        self.log = logger or logging.getLogger("lprebal")

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def rank(self, key: str, page: int = 1) -> List[RankedPair]:
        url = f"{self.market_data_url}/pairs"
        data = await self._get_json(url, params={"rankBy": key, "page": page})
        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise ParseError("rank", "expected an object with a 'data' list", data)

        pairs: List[RankedPair] = []
        for row in rows:
            pair = _decode_ranked(row)
            if pair is None:
                log_event(self.log, "rank_row_skipped", level=logging.DEBUG, row=row)
                continue
            pairs.append(pair)
        log_event(self.log, "rank_fetched", level=logging.DEBUG, key=key, page=page, rows=len(rows), decoded=len(pairs))
        return pairs

    async def profile(self, asset_ids: Sequence[str]) -> List[Profile]:
        """Profiles for at most MAX_PROFILE_BATCH assets (one row per pair)."""
        ids = [a for a in asset_ids if a]
        if not ids:
            return []
        if len(ids) > MAX_PROFILE_BATCH:
            raise ConfigurationError(f"profile batch of {len(ids)} exceeds {MAX_PROFILE_BATCH}")

        url = f"{self.profile_api_url}/tokens/v1/{self.chain_id}/{','.join(ids)}"
        data = await self._get_json(url)
        if not isinstance(data, list):
            raise ParseError("profile", "expected a list of pairs", data)
        return [p for p in (_decode_profile(row) for row in data) if p is not None]

    async def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        await self.limiter.acquire()
        try:
            resp = await self.client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise TransientError(f"market data request failed: {exc}") from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"market data HTTP {resp.status_code} for {url}")
        if resp.status_code >= 400:
            raise ParseError("market_data", f"HTTP {resp.status_code} for {url}", resp.text[:200])
        try:
            return resp.json()
        except ValueError as exc:
            raise ParseError("market_data", f"invalid JSON from {url}", resp.text[:200]) from exc


def _decode_ranked(row: Any) -> Optional[RankedPair]:
    if not isinstance(row, dict):
        return None
    pool = row.get("pool")
    base = row.get("base")
    quote = row.get("quote")
    if not (isinstance(pool, str) and pool and isinstance(base, str) and isinstance(quote, str)):
        return None
    labels = row.get("labels") or ""
    if isinstance(labels, list):
        labels = labels[0] if labels else ""
    return RankedPair(
        pair_id=pool,
        base_asset=base,
        quote_asset=quote,
        label=str(labels),
        chain=str(row.get("chain") or ""),
        protocol=str(row.get("protocol") or ""),
    )


def _decode_profile(row: Any) -> Optional[Profile]:
    if not isinstance(row, dict):
        return None
    base_token = row.get("baseToken") or {}
    pair_address = row.get("pairAddress")
    if not isinstance(base_token, dict) or not pair_address:
        return None
    volume = row.get("volume") or {}
    liquidity = row.get("liquidity") or {}
    price_change = row.get("priceChange") or {}
    labels = row.get("labels") or []
    return Profile(
        address=str(base_token.get("address") or ""),
        symbol=str(base_token.get("symbol") or ""),
        name=str(base_token.get("name") or ""),
        pair_id=str(pair_address),
        price_usd=to_float_safe(row.get("priceUsd")),
        volume_h24=to_float_safe(volume.get("h24") if isinstance(volume, dict) else None),
        liquidity_usd=to_float_safe(liquidity.get("usd") if isinstance(liquidity, dict) else None),
        price_change_h24=to_float_safe(price_change.get("h24") if isinstance(price_change, dict) else None),
        labels=tuple(str(x) for x in labels) if isinstance(labels, list) else (),
    )
