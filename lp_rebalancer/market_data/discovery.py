"""
Candidate discovery: ranking -> inclusion filter -> profiles -> desired set.

Steps:
1. Rank pairs by ``rank_key`` (one page).
2. Keep pairs with the configured label whose base asset is the target asset.
3. Dedupe quote assets and fetch profiles in chunks of at most 30, in parallel.
   Chunk results are merged without relying on order across chunks.
4. Keep profile rows whose pair is one of the ranked pools and whose
   24h volume / liquidity ratio meets the threshold; drop excluded pools.
5. Order by rank position and cap at ``max_positions``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Mapping, Optional

from lp_rebalancer.config.pool_overrides import PoolOverride
from lp_rebalancer.core.models import Candidate, Profile, RankedPair
from lp_rebalancer.core.utils import chunked, dedupe
from lp_rebalancer.infra.logging_cfg import log_event
from lp_rebalancer.market_data.dexscreener import MAX_PROFILE_BATCH


def passes_filter(profile: Profile, min_ratio: float) -> bool:
    if profile.liquidity_usd <= 0:
        return False
    return profile.volume_h24 / profile.liquidity_usd >= min_ratio


async def discover_candidates(
    provider,
    *,
    target_asset: str,
    rank_key: str,
    rank_page: int = 1,
    pool_label: str = "DYN2",
    min_ratio: float = 1.0,
    max_positions: int = 1,
    overrides: Optional[Mapping[str, PoolOverride]] = None,
    logger: Optional[logging.Logger] = None,
) -> List[Candidate]:
    log = logger or logging.getLogger("lprebal")
    overrides = overrides or {}

    ranked: List[RankedPair] = await provider.rank(rank_key, rank_page)
    eligible = [p for p in ranked if p.label == pool_label and p.base_asset == target_asset]
    rank_index: Dict[str, int] = {}
    for idx, pair in enumerate(eligible):
        rank_index.setdefault(pair.pair_id, idx)
    by_pool = {p.pair_id: p for p in eligible}

    quote_assets = dedupe(p.quote_asset for p in eligible if p.quote_asset)
    if not quote_assets:
        log_event(log, "discovery_empty", ranked=len(ranked), eligible=0)
        return []

    batches = await asyncio.gather(
        *(provider.profile(chunk) for chunk in chunked(quote_assets, MAX_PROFILE_BATCH))
    )

    best: Dict[str, Candidate] = {}
    for profiles in batches:
        for prof in profiles:
            pair = by_pool.get(prof.pair_id)
            if pair is None:
                continue
            override = overrides.get(prof.pair_id)
            if override is not None and override.exclude:
                continue
            if not passes_filter(prof, min_ratio):
                continue
            best.setdefault(prof.pair_id, Candidate(
                pair_id=prof.pair_id,
                base_asset=pair.base_asset,
                quote_asset=pair.quote_asset,
                volume_window=prof.volume_h24,
                liquidity_usd=prof.liquidity_usd,
                label=pair.label,
                symbol=prof.symbol,
                price_usd=prof.price_usd,
            ))

    ordered = sorted(best.values(), key=lambda c: rank_index[c.pair_id])
    selected = ordered[:max_positions]
    log_event(
        log,
        "discovery_done",
        ranked=len(ranked),
        eligible=len(eligible),
        quote_assets=len(quote_assets),
        passing=len(ordered),
        selected=[c.pair_id for c in selected],
    )
    return selected
