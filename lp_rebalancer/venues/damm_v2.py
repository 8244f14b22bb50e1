"""
Meteora DAMM v2 (cp-amm) liquidity program.

Reads pool and position accounts straight from the ledger and builds the
program's instructions locally, with no SDK in between.

Account layouts (little endian, after the 8 byte anchor discriminator):

    Pool      token_a_mint@168  token_b_mint@200  token_a_vault@232
              token_b_vault@264 liquidity:u128@360 sqrt_min_price:u128@424
              sqrt_max_price:u128@440 sqrt_price:u128@456 pool_status@481
              token_a_flag@482 token_b_flag@483; cliff fee numerator:u64@8
    Position  pool@8 nft_mint@40 fee_a_pending:u64@136 fee_b_pending:u64@144
              unlocked:u128@152 vested:u128@168 permanent_locked:u128@184

Prices are Q64.64 square roots and liquidity carries a 2^64 scale, so for a
position between sqrt prices lower and upper:

    amount_a = L * (upper - lower) / (lower * upper)
    amount_b = L * (upper - lower) >> 128

Positions are found the way the program's own SDK does it: every Token-2022
NFT the owner holds (amount 1, decimals 0) maps to a position PDA
``["position", nft_mint]``; the ones that decode as positions are kept.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer

from lp_rebalancer.core.context import NATIVE_MINT, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from lp_rebalancer.core.errors import ConfigurationError, ParseError, TransientError
from lp_rebalancer.core.models import InstructionSet, Position
from lp_rebalancer.core.utils import apply_bps_floor, chunked
from lp_rebalancer.infra.logging_cfg import log_event
from lp_rebalancer.venues.base import LiquidityProgram, PoolState, PositionInstructions, RemovalPlan

CP_AMM_PROGRAM_ID = "cpamdpZCGKUy5JxQXB4dcpGPiikHawvSWAd6mEn1sGG"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

FEE_DENOMINATOR = 1_000_000_000
MAX_ACCOUNTS_PER_READ = 100

POOL_MIN_LEN = 486
POSITION_MIN_LEN = 200


def anchor_discriminator(namespace: str, name: str) -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:8]


POOL_DISCRIMINATOR = anchor_discriminator("account", "Pool")
POSITION_DISCRIMINATOR = anchor_discriminator("account", "Position")


def _u8(data: bytes, offset: int) -> int:
    return data[offset]


def _u64(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 8], "little")


def _u128(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 16], "little")


def _key(data: bytes, offset: int) -> str:
    return str(Pubkey.from_bytes(data[offset:offset + 32]))


def token_program_for_flag(flag: int) -> str:
    return TOKEN_2022_PROGRAM_ID if flag == 1 else TOKEN_PROGRAM_ID


# ─────────────────────────────────────────────────────────────────────
# Liquidity math
# ─────────────────────────────────────────────────────────────────────

def _div(numerator: int, denominator: int, round_up: bool) -> int:
    if round_up:
        return -(-numerator // denominator)
    return numerator // denominator


def amount_a_for_liquidity(liquidity: int, sqrt_price: int, sqrt_max_price: int, round_up: bool = False) -> int:
    if liquidity <= 0 or sqrt_price <= 0 or sqrt_max_price <= sqrt_price:
        return 0
    return _div(liquidity * (sqrt_max_price - sqrt_price), sqrt_price * sqrt_max_price, round_up)


def amount_b_for_liquidity(liquidity: int, sqrt_min_price: int, sqrt_price: int, round_up: bool = False) -> int:
    if liquidity <= 0 or sqrt_price <= sqrt_min_price:
        return 0
    return _div(liquidity * (sqrt_price - sqrt_min_price), 1 << 128, round_up)


def liquidity_for_amounts(
    amount_a: int,
    amount_b: int,
    sqrt_price: int,
    sqrt_min_price: int,
    sqrt_max_price: int,
) -> int:
    """Largest liquidity both amounts can fund at the current price."""
    if sqrt_price <= sqrt_min_price or sqrt_price >= sqrt_max_price:
        return 0
    from_a = amount_a * sqrt_price * sqrt_max_price // (sqrt_max_price - sqrt_price)
    from_b = (amount_b << 128) // (sqrt_price - sqrt_min_price)
    return min(from_a, from_b)


# ─────────────────────────────────────────────────────────────────────
# Account decoding
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DammV2PoolState(PoolState):
    token_a_vault: str = ""
    token_b_vault: str = ""
    liquidity: int = 0
    sqrt_price: int = 0
    sqrt_min_price: int = 0
    sqrt_max_price: int = 0
    pool_status: int = 0

    @property
    def enabled(self) -> bool:
        return self.pool_status == 0


@dataclass(frozen=True)
class PositionAccount:
    address: str
    pool: str
    nft_mint: str
    fee_a_pending: int
    fee_b_pending: int
    unlocked_liquidity: int
    vested_liquidity: int
    permanent_locked_liquidity: int

    def to_position(self, owner: str, nft_account: str) -> Position:
        return Position(
            pool_id=self.pool,
            owner_id=owner,
            position_id=self.address,
            position_nft_account=nft_account,
            vested_liquidity=self.vested_liquidity,
            unlocked_liquidity=self.unlocked_liquidity,
            permanent_locked_liquidity=self.permanent_locked_liquidity,
            accrued_fee_a=self.fee_a_pending,
            accrued_fee_b=self.fee_b_pending,
        )


def decode_pool(pool_id: str, data: bytes) -> DammV2PoolState:
    if len(data) < POOL_MIN_LEN or data[:8] != POOL_DISCRIMINATOR:
        raise ParseError("damm_v2_pool", f"{pool_id} is not a DAMM v2 pool account")
    liquidity = _u128(data, 360)
    sqrt_price = _u128(data, 456)
    # Virtual reserves of the active range; swaps inside it follow x * y = L^2.
    reserve_a = liquidity // sqrt_price if sqrt_price else 0
    reserve_b = (liquidity * sqrt_price) >> 128
    return DammV2PoolState(
        pool_id=pool_id,
        token_a_mint=_key(data, 168),
        token_b_mint=_key(data, 200),
        reserve_a=reserve_a,
        reserve_b=reserve_b,
        fee_bps=_u64(data, 8) * 10_000 // FEE_DENOMINATOR,
        token_a_program=token_program_for_flag(_u8(data, 482)),
        token_b_program=token_program_for_flag(_u8(data, 483)),
        token_a_vault=_key(data, 232),
        token_b_vault=_key(data, 264),
        liquidity=liquidity,
        sqrt_price=sqrt_price,
        sqrt_min_price=_u128(data, 424),
        sqrt_max_price=_u128(data, 440),
        pool_status=_u8(data, 481),
    )


def decode_position(address: str, data: bytes) -> PositionAccount:
    if len(data) < POSITION_MIN_LEN or data[:8] != POSITION_DISCRIMINATOR:
        raise ParseError("damm_v2_position", f"{address} is not a DAMM v2 position account")
    return PositionAccount(
        address=address,
        pool=_key(data, 8),
        nft_mint=_key(data, 40),
        fee_a_pending=_u64(data, 136),
        fee_b_pending=_u64(data, 144),
        unlocked_liquidity=_u128(data, 152),
        vested_liquidity=_u128(data, 168),
        permanent_locked_liquidity=_u128(data, 184),
    )


# ─────────────────────────────────────────────────────────────────────
# Instruction helpers
# ─────────────────────────────────────────────────────────────────────

def _pk(value: str) -> Pubkey:
    return Pubkey.from_string(value)


def _w(key: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(key, is_signer=signer, is_writable=True)


def _r(key: Pubkey, signer: bool = False) -> AccountMeta:
    return AccountMeta(key, is_signer=signer, is_writable=False)


def associated_token_address(owner: str, mint: str, token_program: str = TOKEN_PROGRAM_ID) -> str:
    address, _ = Pubkey.find_program_address(
        [bytes(_pk(owner)), bytes(_pk(token_program)), bytes(_pk(mint))],
        _pk(ASSOCIATED_TOKEN_PROGRAM_ID),
    )
    return str(address)


def create_ata_idempotent(payer: str, owner: str, mint: str, token_program: str) -> Instruction:
    ata = associated_token_address(owner, mint, token_program)
    return Instruction(
        _pk(ASSOCIATED_TOKEN_PROGRAM_ID),
        bytes([1]),
        [
            _w(_pk(payer), signer=True),
            _w(_pk(ata)),
            _r(_pk(owner)),
            _r(_pk(mint)),
            _r(SYSTEM_PROGRAM_ID),
            _r(_pk(token_program)),
        ],
    )


def wrap_native(owner: str, lamports: int) -> List[Instruction]:
    """Move lamports into the owner's wrapped-native account and sync it."""
    ata = associated_token_address(owner, NATIVE_MINT)
    return [
        transfer(TransferParams(from_pubkey=_pk(owner), to_pubkey=_pk(ata), lamports=lamports)),
        Instruction(_pk(TOKEN_PROGRAM_ID), bytes([17]), [_w(_pk(ata))]),
    ]


def unwrap_native(owner: str) -> Instruction:
    """Close the wrapped-native account; its lamports return to the owner."""
    ata = associated_token_address(owner, NATIVE_MINT)
    return Instruction(
        _pk(TOKEN_PROGRAM_ID),
        bytes([9]),
        [_w(_pk(ata)), _w(_pk(owner)), _r(_pk(owner), signer=True)],
    )


class DammV2Program(LiquidityProgram):
    """Liquidity program adapter for DAMM v2 pools over a ledger client."""

    def __init__(
        self,
        ledger,
        program_id: str = CP_AMM_PROGRAM_ID,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.program_id = program_id
        self._program = _pk(program_id)
        self.pool_authority = str(self._pda(b"pool_authority"))
        self.event_authority = str(self._pda(b"__event_authority"))
        self.log = logger or logging.getLogger("lprebal")

    def _pda(self, *seeds: bytes) -> Pubkey:
        address, _ = Pubkey.find_program_address(list(seeds), self._program)
        return address

    def position_address(self, nft_mint: str) -> str:
        return str(self._pda(b"position", bytes(_pk(nft_mint))))

    def position_nft_account(self, nft_mint: str) -> str:
        return str(self._pda(b"position_nft_account", bytes(_pk(nft_mint))))

    def _ix(self, name: str, accounts: Sequence[AccountMeta], args: bytes = b"") -> Instruction:
        metas = list(accounts) + [_r(_pk(self.event_authority)), _r(self._program)]
        return Instruction(self._program, anchor_discriminator("global", name) + args, metas)

    # ------------------------------------------------------------------ reads

    async def get_pool_state(self, pool_id: str) -> DammV2PoolState:
        raw = await self.ledger.get_account_data([pool_id])
        data = raw.get(pool_id)
        if data is None:
            raise ParseError("damm_v2_pool", f"pool {pool_id} not found")
        return decode_pool(pool_id, data)

    async def get_positions(self, owner: str) -> List[Position]:
        balances = await self.ledger.get_token_balances(owner)
        nft_mints = [
            b.mint for b in balances
            if b.program_id == TOKEN_2022_PROGRAM_ID and b.raw == 1 and b.decimals == 0
        ]
        positions: List[Position] = []
        for batch in chunked(nft_mints, MAX_ACCOUNTS_PER_READ):
            addresses = {self.position_address(mint): mint for mint in batch}
            raw = await self.ledger.get_account_data(list(addresses))
            for address, mint in addresses.items():
                data = raw.get(address)
                if data is None or data[:8] != POSITION_DISCRIMINATOR:
                    continue
                account = decode_position(address, data)
                positions.append(account.to_position(owner, self.position_nft_account(mint)))
        log_event(
            self.log, "positions_read", level=logging.DEBUG,
            owner=owner, nfts=len(nft_mints), positions=len(positions),
        )
        return positions

    async def _read_position(self, address: str) -> PositionAccount:
        raw = await self.ledger.get_account_data([address])
        data = raw.get(address)
        if data is None:
            raise TransientError(f"position {address} not visible on the ledger")
        return decode_position(address, data)

    # ------------------------------------------------------------------ builders

    def _liquidity_accounts(self, pool: DammV2PoolState, owner: str, nft_account: str) -> List[AccountMeta]:
        """token accounts, vaults, mints, nft account, owner, token programs."""
        return [
            _w(_pk(associated_token_address(owner, pool.token_a_mint, pool.token_a_program))),
            _w(_pk(associated_token_address(owner, pool.token_b_mint, pool.token_b_program))),
            _w(_pk(pool.token_a_vault)),
            _w(_pk(pool.token_b_vault)),
            _r(_pk(pool.token_a_mint)),
            _r(_pk(pool.token_b_mint)),
            _r(_pk(nft_account)),
            _r(_pk(owner), signer=True),
            _r(_pk(pool.token_a_program)),
            _r(_pk(pool.token_b_program)),
        ]

    def _token_accounts(self, pool: DammV2PoolState, owner: str) -> List[Instruction]:
        return [
            create_ata_idempotent(owner, owner, pool.token_a_mint, pool.token_a_program),
            create_ata_idempotent(owner, owner, pool.token_b_mint, pool.token_b_program),
        ]

    async def build_remove_all(
        self,
        position: Position,
        pool: PoolState,
        owner: str,
        slippage_bps: int,
    ) -> RemovalPlan:
        pool = _require_damm(pool)
        account = await self._read_position(position.position_id)
        if account.vested_liquidity or account.permanent_locked_liquidity:
            raise ConfigurationError(f"position {account.address} holds locked liquidity and cannot be closed")

        liquidity = account.unlocked_liquidity
        amount_a = amount_a_for_liquidity(liquidity, pool.sqrt_price, pool.sqrt_max_price)
        amount_b = amount_b_for_liquidity(liquidity, pool.sqrt_min_price, pool.sqrt_price)
        min_a = apply_bps_floor(amount_a, slippage_bps)
        min_b = apply_bps_floor(amount_b, slippage_bps)

        nft_account = self.position_nft_account(account.nft_mint)
        pool_key = _pk(pool.pool_id)
        position_key = _pk(account.address)
        shared = self._liquidity_accounts(pool, owner, nft_account)

        claim = self._ix("claim_position_fee", [
            _r(_pk(self.pool_authority)), _r(pool_key), _w(position_key), *shared,
        ])
        remove = self._ix(
            "remove_all_liquidity",
            [_r(_pk(self.pool_authority)), _w(pool_key), _w(position_key), *shared],
            min_a.to_bytes(8, "little") + min_b.to_bytes(8, "little"),
        )
        close = self._ix("close_position", [
            _w(_pk(account.nft_mint)),
            _w(_pk(nft_account)),
            _w(pool_key),
            _w(position_key),
            _r(_pk(self.pool_authority)),
            _w(_pk(owner)),
            _r(_pk(owner), signer=True),
            _r(_pk(TOKEN_2022_PROGRAM_ID)),
        ])

        unwrap = None
        if pool.has_mint(NATIVE_MINT):
            unwrap = InstructionSet((unwrap_native(owner),), label="unwrap")
        return RemovalPlan(
            instructions=InstructionSet(
                tuple(self._token_accounts(pool, owner)) + (claim, remove, close),
                label="damm_v2:remove_all",
            ),
            amounts={
                pool.token_a_mint: amount_a + account.fee_a_pending,
                pool.token_b_mint: amount_b + account.fee_b_pending,
            },
            min_amounts={pool.token_a_mint: min_a, pool.token_b_mint: min_b},
            unwrap=unwrap,
        )

    async def build_create_position(
        self,
        pool: PoolState,
        owner: str,
        amounts: Dict[str, int],
        slippage_bps: int,
    ) -> PositionInstructions:
        pool = _require_damm(pool)
        if not pool.enabled:
            raise ConfigurationError(f"pool {pool.pool_id} is disabled")
        amount_a = int(amounts.get(pool.token_a_mint, 0))
        amount_b = int(amounts.get(pool.token_b_mint, 0))
        liquidity = liquidity_for_amounts(
            amount_a, amount_b, pool.sqrt_price, pool.sqrt_min_price, pool.sqrt_max_price
        )
        if liquidity <= 0:
            raise ConfigurationError(f"amounts {amount_a}/{amount_b} fund no liquidity in pool {pool.pool_id}")

        need_a = amount_a_for_liquidity(liquidity, pool.sqrt_price, pool.sqrt_max_price, round_up=True)
        need_b = amount_b_for_liquidity(liquidity, pool.sqrt_min_price, pool.sqrt_price, round_up=True)
        max_a = min(amount_a, _with_buffer(need_a, slippage_bps))
        max_b = min(amount_b, _with_buffer(need_b, slippage_bps))

        nft = Keypair()
        nft_mint = str(nft.pubkey())
        nft_account = self.position_nft_account(nft_mint)
        position = self.position_address(nft_mint)
        pool_key = _pk(pool.pool_id)

        instructions: List[Instruction] = list(self._token_accounts(pool, owner))
        native = pool.has_mint(NATIVE_MINT)
        if native:
            instructions.extend(wrap_native(owner, max_a if pool.token_a_mint == NATIVE_MINT else max_b))
        instructions.append(self._ix("create_position", [
            _r(_pk(owner)),
            _w(nft.pubkey(), signer=True),
            _w(_pk(nft_account)),
            _w(pool_key),
            _w(_pk(position)),
            _r(_pk(self.pool_authority)),
            _w(_pk(owner), signer=True),
            _r(_pk(TOKEN_2022_PROGRAM_ID)),
            _r(SYSTEM_PROGRAM_ID),
        ]))
        instructions.append(self._ix(
            "add_liquidity",
            [_w(pool_key), _w(_pk(position)), *self._liquidity_accounts(pool, owner, nft_account)],
            liquidity.to_bytes(16, "little") + max_a.to_bytes(8, "little") + max_b.to_bytes(8, "little"),
        ))
        if native:
            instructions.append(unwrap_native(owner))

        log_event(
            self.log, "position_built", level=logging.DEBUG,
            pool=pool.pool_id, position=position, liquidity=str(liquidity), max_a=max_a, max_b=max_b,
        )
        return PositionInstructions(
            instructions=InstructionSet(tuple(instructions), signers=(nft,), label="damm_v2:create_position"),
            position_nft=nft_mint,
        )

    async def build_swap(
        self,
        pool: PoolState,
        owner: str,
        input_mint: str,
        amount_in: int,
        min_output: int,
    ) -> InstructionSet:
        pool = _require_damm(pool)
        if not pool.enabled:
            raise ConfigurationError(f"pool {pool.pool_id} is disabled")
        output_mint = pool.other_mint(input_mint)
        input_account = associated_token_address(owner, input_mint, pool.program_for(input_mint))
        output_account = associated_token_address(owner, output_mint, pool.program_for(output_mint))

        instructions: List[Instruction] = list(self._token_accounts(pool, owner))
        if input_mint == NATIVE_MINT:
            instructions.extend(wrap_native(owner, amount_in))
        instructions.append(self._ix(
            "swap",
            [
                _r(_pk(self.pool_authority)),
                _w(_pk(pool.pool_id)),
                _w(_pk(input_account)),
                _w(_pk(output_account)),
                _w(_pk(pool.token_a_vault)),
                _w(_pk(pool.token_b_vault)),
                _r(_pk(pool.token_a_mint)),
                _r(_pk(pool.token_b_mint)),
                _r(_pk(owner), signer=True),
                _r(_pk(pool.token_a_program)),
                _r(_pk(pool.token_b_program)),
                # No referral account.
                _r(self._program),
            ],
            int(amount_in).to_bytes(8, "little") + int(min_output).to_bytes(8, "little"),
        ))
        if pool.has_mint(NATIVE_MINT):
            instructions.append(unwrap_native(owner))
        return InstructionSet(tuple(instructions), label="damm_v2:swap")


def _with_buffer(amount: int, bps: int) -> int:
    return -(-amount * (10_000 + bps) // 10_000)


def _require_damm(pool: PoolState) -> DammV2PoolState:
    if not isinstance(pool, DammV2PoolState):
        raise ConfigurationError(f"pool {pool.pool_id} was not read by the DAMM v2 program")
    return pool
