"""
Tests for RouterVenue against a mocked swap API.
"""

import base64
import json
import pytest
import httpx

from solders.pubkey import Pubkey

from lp_rebalancer.core.errors import ParseError, TransientError
from lp_rebalancer.core.models import Quote, RetryParams
from lp_rebalancer.venues.router import RouterVenue, decode_instruction

PROGRAM = str(Pubkey.new_unique())
ACCOUNT = str(Pubkey.new_unique())


def raw_ix(data=b"\x01"):
    return {
        "programId": PROGRAM,
        "accounts": [{"pubkey": ACCOUNT, "isSigner": False, "isWritable": True}],
        "data": base64.b64encode(data).decode(),
    }


def make_venue(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RouterVenue("https://swap.test/", client=http)


class TestQuote:

    @pytest.mark.asyncio
    async def test_attempt_params_sent(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"outAmount": "12345", "routePlan": []})

        venue = make_venue(handler)
        params = RetryParams(attempt=2, slippage_bps=250, resource_ceiling=25, amount_factor=0.99)
        quote = await venue.quote("IN", "OUT", 1000, params)
        assert quote.output_amount == 12345
        assert quote.venue_id == "router"
        assert seen["params"]["slippageBps"] == "250"
        assert seen["params"]["maxAccounts"] == "25"
        assert seen["params"]["amount"] == "1000"

    @pytest.mark.asyncio
    async def test_error_field_is_transient(self):
        venue = make_venue(lambda r: httpx.Response(200, json={"error": "no route"}))
        with pytest.raises(TransientError):
            await venue.quote("IN", "OUT", 1)

    @pytest.mark.asyncio
    async def test_missing_out_amount(self):
        venue = make_venue(lambda r: httpx.Response(200, json={"routePlan": []}))
        with pytest.raises(ParseError):
            await venue.quote("IN", "OUT", 1)

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        venue = make_venue(lambda r: httpx.Response(429, json={}))
        with pytest.raises(TransientError):
            await venue.quote("IN", "OUT", 1)


class TestSwapInstructions:

    @pytest.mark.asyncio
    async def test_assembles_instruction_set(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "computeBudgetInstructions": [raw_ix(b"\x02")],
                "setupInstructions": [raw_ix(b"\x03")],
                "swapInstruction": raw_ix(b"\x04"),
                "cleanupInstruction": raw_ix(b"\x05"),
                "addressLookupTableAddresses": ["ALT1"],
            })

        venue = make_venue(handler)
        quote = Quote("router", 500, raw={"outAmount": "500", "otherAmountThreshold": "495"})
        ixs = await venue.build_swap_instructions(quote, "OWNER", 480)
        assert len(ixs.instructions) == 4
        assert [bytes(ix.data) for ix in ixs.instructions] == [b"\x02", b"\x03", b"\x04", b"\x05"]
        assert ixs.lookup_tables == ("ALT1",)
        assert seen["body"]["quoteResponse"]["otherAmountThreshold"] == "480"
        assert seen["body"]["userPublicKey"] == "OWNER"

    @pytest.mark.asyncio
    async def test_missing_swap_instruction(self):
        venue = make_venue(lambda r: httpx.Response(200, json={"setupInstructions": []}))
        with pytest.raises(ParseError):
            await venue.build_swap_instructions(Quote("router", 1, raw={}), "OWNER", 1)

    def test_decode_bad_instruction(self):
        with pytest.raises(ParseError):
            decode_instruction({"programId": "not a key"})
