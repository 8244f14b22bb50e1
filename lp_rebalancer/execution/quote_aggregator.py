"""
QuoteAggregator: ask every venue concurrently and keep the best output.

Each venue call gets its own timeout; a venue that raises or times out is
recorded as a Quote with ``error`` set and never affects its siblings.
The winner is the strict maximum output. Equal outputs go to the venue
registered first.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from lp_rebalancer.core.errors import ConfigurationError, NoRouteError
from lp_rebalancer.core.models import BestQuote, Quote, RetryParams
from lp_rebalancer.infra.logging_cfg import log_event
from lp_rebalancer.venues.base import Venue


class QuoteAggregator:
    def __init__(
        self,
        venues: Sequence[Venue] = (),
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
        metrics: Any = None,
    ) -> None:
        self.venues: List[Venue] = list(venues)
        self.timeout = timeout
        self.log = logger or logging.getLogger("lprebal")
        self.metrics = metrics

    def register(self, venue: Venue) -> None:
        self.venues.append(venue)

    def find_venue(self, venue_id: str, venues: Optional[Sequence[Venue]] = None) -> Venue:
        for venue in (venues if venues is not None else self.venues):
            if venue.venue_id == venue_id:
                return venue
        raise ConfigurationError(f"unknown venue {venue_id}")

    async def _quote_one(
        self,
        venue: Venue,
        input_asset: str,
        output_asset: str,
        amount: int,
        params: Optional[RetryParams],
    ) -> Quote:
        try:
            quote = await asyncio.wait_for(
                venue.quote(input_asset, output_asset, amount, params), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return self._failed(venue, f"timeout after {self.timeout}s")
        except Exception as exc:
            return self._failed(venue, f"{type(exc).__name__}: {exc}")
        if quote.venue_id != venue.venue_id:
            quote = Quote(venue_id=venue.venue_id, output_amount=quote.output_amount, error=quote.error, raw=quote.raw)
        self._record(venue.venue_id, "ok" if quote.usable else "empty")
        log_event(self.log, "venue_quote", level=logging.DEBUG, venue=venue.venue_id, output=quote.output_amount, error=quote.error)
        return quote

    def _failed(self, venue: Venue, error: str) -> Quote:
        self._record(venue.venue_id, "error")
        log_event(self.log, "venue_quote_failed", level=logging.WARNING, venue=venue.venue_id, error=error)
        return Quote(venue_id=venue.venue_id, output_amount=0, error=error)

    def _record(self, venue_id: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.quotes_total.labels(venue=venue_id, outcome=outcome).inc()

    async def get_best_quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        params: Optional[RetryParams] = None,
        venues: Optional[Sequence[Venue]] = None,
    ) -> BestQuote:
        """
        Query every venue for ``amount`` of ``input_asset`` -> ``output_asset``.

        Args:
            amount: Positive integer amount in base units
            params: Attempt risk parameters forwarded to venues
            venues: Override the registered venues (order still breaks ties)

        Raises:
            ConfigurationError: amount is not a positive integer
            NoRouteError: no venue returned a usable quote
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ConfigurationError(f"quote amount must be a positive integer, got {amount!r}")
        pool = list(venues) if venues is not None else list(self.venues)
        if not pool:
            raise NoRouteError(input_asset, output_asset, amount, {"*": "no venues registered"})

        quotes = await asyncio.gather(
            *(self._quote_one(v, input_asset, output_asset, amount, params) for v in pool)
        )

        best: Optional[Quote] = None
        for q in quotes:
            if not q.usable:
                continue
            if best is None or q.output_amount > best.output_amount:
                best = q

        if best is None:
            errors = {q.venue_id: q.error or f"non-positive output {q.output_amount}" for q in quotes}
            log_event(
                self.log, "no_route", level=logging.ERROR,
                input=input_asset, output=output_asset, amount=amount, errors=errors,
            )
            raise NoRouteError(input_asset, output_asset, amount, errors)

        if self.metrics is not None:
            self.metrics.best_quote_wins.labels(venue=best.venue_id).inc()
        log_event(
            self.log, "best_quote", level=logging.INFO,
            venue=best.venue_id, output=best.output_amount, amount=amount,
            quotes={q.venue_id: q.output_amount for q in quotes},
        )
        return BestQuote(venue_id=best.venue_id, output_amount=best.output_amount, quotes=tuple(quotes))
