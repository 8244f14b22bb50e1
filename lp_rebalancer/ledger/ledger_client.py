"""
Ledger client: balances, freshness tokens, mint metadata, positions and
transaction submission.

``LedgerClient`` is the interface the engine depends on. ``RpcLedgerClient``
implements it over Solana JSON-RPC with httpx. Every response is decoded
into typed records at this boundary.
"""

from __future__ import annotations

import base64
import itertools
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from lp_rebalancer.core.context import NATIVE_MINT, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from lp_rebalancer.core.errors import (
    ConfigurationError,
    ParseError,
    SlippageExceededError,
    SubmissionError,
    TransientError,
)
from lp_rebalancer.core.models import FreshnessToken, Position, TokenBalance
from lp_rebalancer.core.utils import to_int_safe
from lp_rebalancer.infra.logging_cfg import log_event

# Custom program errors that mean "minimum output not met".
SLIPPAGE_ERROR_MARKERS = ("slippage", "0x1771", "\"custom\": 6001", "exceededslippage")


def is_slippage_error(err: Any) -> bool:
    text = json.dumps(err, default=str).lower() if not isinstance(err, str) else err.lower()
    return any(marker in text for marker in SLIPPAGE_ERROR_MARKERS)


@dataclass(frozen=True)
class SignatureStatus:
    signature: str
    confirmation_status: Optional[str]
    err: Any = None
    slot: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    @property
    def landed(self) -> bool:
        return self.err is None and self.confirmation_status in {"confirmed", "finalized"}


class LedgerClient(ABC):
    """Read and submit interface to the ledger."""

    @abstractmethod
    async def get_balance(self, owner: str) -> int:
        """Native balance in base units."""

    @abstractmethod
    async def get_token_balances(self, owner: str) -> List[TokenBalance]:
        """Non-zero token balances across both token programs."""

    @abstractmethod
    async def get_token_balance(self, owner: str, mint: str) -> int:
        """Raw balance of one mint (native balance for the native mint)."""

    @abstractmethod
    async def get_freshness_token(self) -> FreshnessToken:
        ...

    @abstractmethod
    async def get_block_height(self) -> int:
        ...

    @abstractmethod
    async def get_mint_decimals(self, mint: str, program_id: str = TOKEN_PROGRAM_ID) -> int:
        ...

    @abstractmethod
    async def get_account_data(self, addresses: Sequence[str]) -> Dict[str, bytes]:
        """Raw account data for each address that exists."""

    @abstractmethod
    async def get_positions(self, owner: str) -> List[Position]:
        ...

    @abstractmethod
    async def submit(self, signed_tx: bytes) -> str:
        """Submit a signed transaction and return its signature."""

    @abstractmethod
    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """None when the ledger has never seen the signature."""

    async def close(self) -> None:
        return None


class RpcLedgerClient(LedgerClient):
    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        timeout: float = 15.0,
        position_indexer_url: Optional[str] = None,
        position_source: Any = None,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.position_indexer_url = position_indexer_url.rstrip("/") if position_indexer_url else None
        # Optional object exposing ``get_positions(owner)`` (e.g. a liquidity program adapter).
        self.position_source = position_source
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True
        self.log = logger or logging.getLogger("lprebal")
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # ------------------------------------------------------------------ reads

    async def get_balance(self, owner: str) -> int:
        result = await self._rpc("getBalance", [owner, {"commitment": self.commitment}])
        return _value_int(result, "getBalance")

    async def get_token_balances(self, owner: str) -> List[TokenBalance]:
        balances: List[TokenBalance] = []
        for program in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
            result = await self._rpc(
                "getTokenAccountsByOwner",
                [owner, {"programId": program}, {"encoding": "jsonParsed", "commitment": self.commitment}],
            )
            for bal in _decode_token_accounts(result, program):
                if bal.raw > 0:
                    balances.append(bal)
        return balances

    async def get_token_balance(self, owner: str, mint: str) -> int:
        if mint == NATIVE_MINT:
            return await self.get_balance(owner)
        result = await self._rpc(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        return sum(b.raw for b in _decode_token_accounts(result, ""))

    async def get_freshness_token(self) -> FreshnessToken:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict) or not value.get("blockhash"):
            raise ParseError("getLatestBlockhash", "missing blockhash", result)
        return FreshnessToken(
            value=str(value["blockhash"]),
            last_valid_height=to_int_safe(value.get("lastValidBlockHeight")),
        )

    async def get_block_height(self) -> int:
        result = await self._rpc("getBlockHeight", [{"commitment": self.commitment}])
        if not isinstance(result, int):
            raise ParseError("getBlockHeight", "expected an integer", result)
        return result

    async def get_mint_decimals(self, mint: str, program_id: str = TOKEN_PROGRAM_ID) -> int:
        result = await self._rpc("getAccountInfo", [mint, {"encoding": "jsonParsed"}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise ParseError("getAccountInfo", f"mint {mint} not found", result)
        if program_id and value.get("owner") != program_id:
            raise ParseError("getAccountInfo", f"mint {mint} is owned by {value.get('owner')}, not {program_id}")
        try:
            return int(value["data"]["parsed"]["info"]["decimals"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError("getAccountInfo", f"mint {mint} has no parsed decimals", value) from exc

    async def get_account_data(self, addresses: Sequence[str]) -> Dict[str, bytes]:
        if not addresses:
            return {}
        result = await self._rpc(
            "getMultipleAccounts", [list(addresses), {"encoding": "base64", "commitment": self.commitment}]
        )
        values = result.get("value") if isinstance(result, dict) else None
        if not isinstance(values, list) or len(values) != len(addresses):
            raise ParseError("getMultipleAccounts", "unexpected response shape", result)
        out: Dict[str, bytes] = {}
        for address, account in zip(addresses, values):
            if not isinstance(account, dict):
                continue
            data = account.get("data")
            if isinstance(data, list) and data:
                out[address] = base64.b64decode(data[0])
        return out

    async def get_positions(self, owner: str) -> List[Position]:
        if self.position_source is not None:
            return list(await self.position_source.get_positions(owner))
        if not self.position_indexer_url:
            raise ConfigurationError("no position source configured (set LPR_POSITION_INDEXER_URL)")
        url = f"{self.position_indexer_url}/positions/{owner}"
        try:
            resp = await self.client.get(url)
        except httpx.HTTPError as exc:
            raise TransientError(f"position indexer request failed: {exc}") from exc
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientError(f"position indexer HTTP {resp.status_code}")
        resp.raise_for_status()
        data = resp.json()
        rows = data.get("positions") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise ParseError("positions", "expected a list of positions", data)
        return [_decode_position(row, owner) for row in rows]

    # ------------------------------------------------------------------ writes

    async def submit(self, signed_tx: bytes) -> str:
        encoded = base64.b64encode(signed_tx).decode("ascii")
        params = [
            encoded,
            {
                "encoding": "base64",
                "skipPreflight": False,
                "preflightCommitment": self.commitment,
                "maxRetries": 0,
            },
        ]
        try:
            result = await self._rpc("sendTransaction", params)
        except _RpcResponseError as exc:
            if is_slippage_error(exc.error):
                raise SlippageExceededError(f"preflight rejected: {exc}") from exc
            raise SubmissionError(f"preflight rejected: {exc}") from exc
        if not isinstance(result, str):
            raise ParseError("sendTransaction", "expected a signature string", result)
        return result

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        result = await self._rpc(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
        )
        values = result.get("value") if isinstance(result, dict) else None
        if not isinstance(values, list) or not values:
            raise ParseError("getSignatureStatuses", "unexpected response shape", result)
        status = values[0]
        if status is None:
            return None
        return SignatureStatus(
            signature=signature,
            confirmation_status=status.get("confirmationStatus"),
            err=status.get("err"),
            slot=status.get("slot"),
        )

    # ------------------------------------------------------------------ plumbing

    async def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self.client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as exc:
            raise TransientError(f"rpc {method} failed: {exc}") from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            log_event(self.log, "http_retry", level=logging.WARNING, method=method, status=resp.status_code)
            raise TransientError(f"rpc {method} HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ParseError(method, "invalid JSON", resp.text[:200]) from exc
        if not isinstance(data, dict):
            raise ParseError(method, "expected a JSON-RPC object", data)
        if data.get("error") is not None:
            raise _RpcResponseError(method, data["error"])
        return data.get("result")


class _RpcResponseError(TransientError):
    def __init__(self, method: str, error: Any) -> None:
        message = error.get("message") if isinstance(error, dict) else str(error)
        super().__init__(f"rpc {method} error: {message}")
        self.method = method
        self.error = error


def _value_int(result: Any, method: str) -> int:
    value = result.get("value") if isinstance(result, dict) else None
    if not isinstance(value, int):
        raise ParseError(method, "expected an integer value", result)
    return value


def _decode_token_accounts(result: Any, program_id: str) -> List[TokenBalance]:
    accounts = result.get("value") if isinstance(result, dict) else None
    if not isinstance(accounts, list):
        raise ParseError("getTokenAccountsByOwner", "expected a value list", result)
    out: List[TokenBalance] = []
    for entry in accounts:
        try:
            account = entry["account"]
            parsed = account["data"]["parsed"]
            if parsed.get("type") != "account":
                continue
            info = parsed["info"]
            amount = info["tokenAmount"]
            out.append(TokenBalance(
                mint=str(info["mint"]),
                raw=int(amount["amount"]),
                decimals=int(amount["decimals"]),
                program_id=program_id or str(account.get("owner", "")),
            ))
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError("getTokenAccountsByOwner", f"undecodable token account: {exc}", entry) from exc
    return out


def _decode_position(row: Any, owner: str) -> Position:
    if not isinstance(row, dict) or not row.get("pool"):
        raise ParseError("positions", "position row without pool", row)
    return Position(
        pool_id=str(row["pool"]),
        owner_id=str(row.get("owner") or owner),
        position_id=str(row.get("position") or ""),
        position_nft_account=str(row.get("positionNftAccount") or ""),
        vested_liquidity=to_int_safe(row.get("vestedLiquidity")),
        unlocked_liquidity=to_int_safe(row.get("unlockedLiquidity")),
        permanent_locked_liquidity=to_int_safe(row.get("permanentLockedLiquidity")),
        accrued_fee_a=to_int_safe(row.get("feeA")),
        accrued_fee_b=to_int_safe(row.get("feeB")),
    )
