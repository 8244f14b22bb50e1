"""
RouterVenue: aggregated swap routing over an HTTP swap API.

Endpoints:
    GET  {swap_api_url}/swap/v1/quote?inputMint&outputMint&amount&slippageBps&maxAccounts
    POST {swap_api_url}/swap/v1/swap-instructions

The attempt's resource ceiling is sent as ``maxAccounts`` so escalation can
allow longer routes on later attempts.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from lp_rebalancer.core.errors import ParseError, TransientError
from lp_rebalancer.core.models import InstructionSet, Quote, RetryParams
from lp_rebalancer.core.utils import to_int_safe
from lp_rebalancer.venues.base import Venue

DEFAULT_SLIPPAGE_BPS = 50
DEFAULT_MAX_ACCOUNTS = 20


def decode_instruction(raw: Any) -> Instruction:
    """Decode ``{programId, accounts: [{pubkey, isSigner, isWritable}], data}``."""
    try:
        accounts = [
            AccountMeta(
                Pubkey.from_string(a["pubkey"]),
                bool(a.get("isSigner", False)),
                bool(a.get("isWritable", False)),
            )
            for a in raw.get("accounts", [])
        ]
        return Instruction(Pubkey.from_string(raw["programId"]), base64.b64decode(raw.get("data", "")), accounts)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ParseError("swap-instructions", f"undecodable instruction: {exc}", raw) from exc


class RouterVenue(Venue):
    def __init__(
        self,
        swap_api_url: str,
        venue_id: str = "router",
        timeout: float = 15.0,
        max_priority_fee_lamports: int = 1_000_000,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.venue_id = venue_id
        self.base_url = swap_api_url.rstrip("/")
        self.max_priority_fee_lamports = max_priority_fee_lamports
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True
        self.log = logger or logging.getLogger("lprebal")

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        params: Optional[RetryParams] = None,
    ) -> Quote:
        query = {
            "inputMint": input_asset,
            "outputMint": output_asset,
            "amount": str(int(amount)),
            "slippageBps": params.slippage_bps if params else DEFAULT_SLIPPAGE_BPS,
            "maxAccounts": params.resource_ceiling if params else DEFAULT_MAX_ACCOUNTS,
        }
        data = await self._request("GET", "/swap/v1/quote", params=query)
        if not isinstance(data, dict):
            raise ParseError("quote", "expected an object", data)
        if data.get("error"):
            raise TransientError(f"router quote error: {data['error']}")
        if "outAmount" not in data:
            raise ParseError("quote", "missing outAmount", data)
        return Quote(venue_id=self.venue_id, output_amount=to_int_safe(data["outAmount"]), raw=data)

    async def build_swap_instructions(
        self,
        quote: Quote,
        owner: str,
        min_output: int,
        params: Optional[RetryParams] = None,
    ) -> InstructionSet:
        if not isinstance(quote.raw, dict):
            raise ParseError("swap-instructions", "router quote has no raw response")
        quote_response = dict(quote.raw)
        quote_response["otherAmountThreshold"] = str(int(min_output))
        if params is not None:
            quote_response["slippageBps"] = params.slippage_bps

        body = {
            "quoteResponse": quote_response,
            "userPublicKey": owner,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": self.max_priority_fee_lamports,
                    "priorityLevel": "veryHigh",
                }
            },
        }
        data = await self._request("POST", "/swap/v1/swap-instructions", json=body)
        if not isinstance(data, dict):
            raise ParseError("swap-instructions", "expected an object", data)
        if data.get("error"):
            raise TransientError(f"router swap-instructions error: {data['error']}")
        if not data.get("swapInstruction"):
            raise ParseError("swap-instructions", "missing swapInstruction", data)

        raw_ixs: List[Dict[str, Any]] = []
        raw_ixs.extend(data.get("computeBudgetInstructions") or [])
        raw_ixs.extend(data.get("setupInstructions") or [])
        raw_ixs.append(data["swapInstruction"])
        if data.get("cleanupInstruction"):
            raw_ixs.append(data["cleanupInstruction"])
        raw_ixs.extend(data.get("otherInstructions") or [])

        return InstructionSet(
            instructions=tuple(decode_instruction(ix) for ix in raw_ixs),
            lookup_tables=tuple(data.get("addressLookupTableAddresses") or ()),
            label=f"swap:{self.venue_id}",
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise TransientError(f"router {path} failed: {exc}") from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"router {path} HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ParseError(path, "invalid JSON", resp.text[:200]) from exc
        if resp.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else data
            raise TransientError(f"router {path} HTTP {resp.status_code}: {message}")
        return data
