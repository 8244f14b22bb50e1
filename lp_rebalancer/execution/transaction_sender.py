"""
TransactionSender: sign, submit and confirm one instruction set.

Every send holds the wallet's submission lock, fetches a fresh freshness
token, and waits until the signature is either confirmed, failed on the
ledger, or provably expired (block height past the token's last valid
height). A submission whose fate is unknown is never resubmitted here; the
retry layer starts over with a new freshness token.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from lp_rebalancer.core.errors import SlippageExceededError, SubmissionError, TransientError
from lp_rebalancer.core.models import Confirmation, FreshnessToken, InstructionSet
from lp_rebalancer.infra.logging_cfg import log_event
from lp_rebalancer.infra.wallet_lock import WalletLockCoordinator
from lp_rebalancer.ledger.ledger_client import SignatureStatus, is_slippage_error
from lp_rebalancer.ledger.signer import decode_lookup_tables


class TransactionSender:
    def __init__(
        self,
        ledger,
        signer,
        locks: WalletLockCoordinator,
        wallet: str,
        confirm_timeout: float = 60.0,
        poll_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
        sleep: Callable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ledger = ledger
        self.signer = signer
        self.locks = locks
        self.wallet = wallet
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.log = logger or logging.getLogger("lprebal")
        self._sleep = sleep
        self._clock = clock

    async def send(self, instructions: InstructionSet, label: str = "") -> Confirmation:
        lock = await self.locks.get_lock(self.wallet)
        async with lock:
            freshness = await self.ledger.get_freshness_token()
            tables = []
            if instructions.lookup_tables:
                raw = await self.ledger.get_account_data(instructions.lookup_tables)
                tables = decode_lookup_tables(raw, instructions.lookup_tables)
            signed = self.signer.sign(instructions, freshness, tables)

            try:
                signature = await self.ledger.submit(signed.payload)
            except (SlippageExceededError, SubmissionError):
                # Rejected at preflight: the transaction never reached a block.
                raise
            except TransientError as exc:
                # Transport failure: the transaction may or may not have been
                # received, so track it by its own signature.
                log_event(
                    self.log, "submit_unknown", level=logging.WARNING,
                    label=label, signature=signed.signature, error=str(exc),
                )
                signature = signed.signature

            log_event(self.log, "tx_submitted", level=logging.INFO, label=label, signature=signature)
            return await self._await_confirmation(signature, freshness, label)

    async def _await_confirmation(self, signature: str, freshness: FreshnessToken, label: str) -> Confirmation:
        deadline = self._clock() + self.confirm_timeout
        while True:
            status = await self._status(signature)
            if status is not None:
                if status.failed:
                    log_event(
                        self.log, "tx_failed", level=logging.ERROR,
                        label=label, signature=signature, err=status.err,
                    )
                    if is_slippage_error(status.err):
                        raise SlippageExceededError(f"{label}: slippage exceeded on-chain ({signature})")
                    raise SubmissionError(f"{label}: transaction failed: {status.err}", signature)
                if status.landed:
                    log_event(self.log, "tx_confirmed", level=logging.INFO, label=label, signature=signature, slot=status.slot)
                    return Confirmation(signature=signature, slot=status.slot)

            if freshness.last_valid_height > 0:
                height = await self._block_height()
                if height is not None and height > freshness.last_valid_height:
                    raise SubmissionError(f"{label}: transaction expired unconfirmed", signature)

            if self._clock() >= deadline:
                log_event(
                    self.log, "tx_unconfirmed", level=logging.CRITICAL,
                    label=label, signature=signature, timeout=self.confirm_timeout,
                )
                raise SubmissionError(f"{label}: not confirmed within {self.confirm_timeout}s", signature)
            await self._sleep(self.poll_interval)

    async def _status(self, signature: str) -> Optional[SignatureStatus]:
        try:
            return await self.ledger.get_signature_status(signature)
        except TransientError as exc:
            log_event(self.log, "http_retry", level=logging.WARNING, op="signature_status", error=str(exc))
            return None

    async def _block_height(self) -> Optional[int]:
        try:
            return await self.ledger.get_block_height()
        except TransientError:
            return None
