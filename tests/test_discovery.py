"""
Tests for candidate discovery.
"""

import pytest

from lp_rebalancer.config.pool_overrides import PoolOverride
from lp_rebalancer.core.models import Profile, RankedPair
from lp_rebalancer.market_data.discovery import discover_candidates, passes_filter

TARGET = "So11111111111111111111111111111111111111112"


def pair(pool_id, quote, label="DYN2", base=TARGET):
    return RankedPair(pair_id=pool_id, base_asset=base, quote_asset=quote, label=label)


def profile(address, pool_id, volume=200.0, liquidity=100.0):
    return Profile(
        address=address, symbol=address.upper(), name=address, pair_id=pool_id,
        price_usd=1.0, volume_h24=volume, liquidity_usd=liquidity,
    )


class MockProvider:
    def __init__(self, ranked, profiles):
        self.ranked = ranked
        self.profiles = {p.address: [] for p in profiles}
        for p in profiles:
            self.profiles[p.address].append(p)
        self.profile_calls = []

    async def rank(self, key, page=1):
        return list(self.ranked)

    async def profile(self, ids):
        self.profile_calls.append(list(ids))
        out = []
        for i in ids:
            out.extend(self.profiles.get(i, []))
        return out


async def discover(provider, **kwargs):
    args = dict(target_asset=TARGET, rank_key="trendingScoreH6", min_ratio=1.0, max_positions=5)
    args.update(kwargs)
    return await discover_candidates(provider, **args)


class TestFilters:

    def test_ratio_filter(self):
        assert passes_filter(profile("a", "p", volume=100, liquidity=100), 1.0)
        assert not passes_filter(profile("a", "p", volume=99, liquidity=100), 1.0)
        assert not passes_filter(profile("a", "p", volume=99, liquidity=0), 0.0)

    @pytest.mark.asyncio
    async def test_label_and_base_filter(self):
        provider = MockProvider(
            [pair("p1", "a"), pair("p2", "b", label="CLMM"), pair("p3", "c", base="OTHER")],
            [profile("a", "p1"), profile("b", "p2"), profile("c", "p3")],
        )
        result = await discover(provider)
        assert [c.pair_id for c in result] == ["p1"]
        assert provider.profile_calls == [["a"]]

    @pytest.mark.asyncio
    async def test_profile_for_unranked_pool_ignored(self):
        provider = MockProvider([pair("p1", "a")], [profile("a", "other-pool")])
        assert await discover(provider) == []

    @pytest.mark.asyncio
    async def test_low_ratio_dropped(self):
        provider = MockProvider(
            [pair("p1", "a"), pair("p2", "b")],
            [profile("a", "p1", volume=10), profile("b", "p2", volume=500)],
        )
        result = await discover(provider)
        assert [c.pair_id for c in result] == ["p2"]
        assert result[0].volume_liquidity_ratio == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_excluded_pool_dropped(self):
        provider = MockProvider([pair("p1", "a"), pair("p2", "b")], [profile("a", "p1"), profile("b", "p2")])
        result = await discover(provider, overrides={"p1": PoolOverride(exclude=True)})
        assert [c.pair_id for c in result] == ["p2"]


class TestBatchingAndOrder:

    @pytest.mark.asyncio
    async def test_profiles_fetched_in_batches_of_thirty(self):
        ranked = [pair(f"p{i}", f"t{i}") for i in range(65)]
        profiles = [profile(f"t{i}", f"p{i}") for i in range(65)]
        provider = MockProvider(ranked, profiles)
        result = await discover(provider, max_positions=100)
        assert [len(c) for c in provider.profile_calls] == [30, 30, 5]
        assert len(result) == 65

    @pytest.mark.asyncio
    async def test_quote_assets_deduped(self):
        provider = MockProvider([pair("p1", "a"), pair("p2", "a")], [profile("a", "p1"), profile("a", "p2")])
        result = await discover(provider)
        assert provider.profile_calls == [["a"]]
        assert {c.pair_id for c in result} == {"p1", "p2"}

    @pytest.mark.asyncio
    async def test_rank_order_and_cap(self):
        ranked = [pair("p3", "c"), pair("p1", "a"), pair("p2", "b")]
        # Profiles come back in a different order than the ranking.
        provider = MockProvider(ranked, [profile("a", "p1"), profile("b", "p2"), profile("c", "p3")])
        result = await discover(provider, max_positions=2)
        assert [c.pair_id for c in result] == ["p3", "p1"]

    @pytest.mark.asyncio
    async def test_empty_ranking(self):
        provider = MockProvider([], [])
        assert await discover(provider) == []
        assert provider.profile_calls == []
