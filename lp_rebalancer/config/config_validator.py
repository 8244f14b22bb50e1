"""
Startup validation of Settings.

``Settings._validate`` already rejects values the engine cannot run with.
This layer judges whether a loadable configuration is safe for a live wallet:
ranges that are legal but reckless, settings that only make sense together,
and a live mode that is missing its signer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ValidationSeverity(Enum):
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logged, startup continues
    INFO = auto()


@dataclass
class ValidationIssue:
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None

    def render(self) -> str:
        text = f"CONFIG {self.severity.name}: {self.message}"
        if self.suggestion:
            text += f" (suggestion: {self.suggestion})"
        return text


@dataclass
class ValidationResult:
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.get_errors()

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is ValidationSeverity.WARNING]


Check = Callable[[Any], List[ValidationIssue]]

# field -> (lowest sane, highest sane, env var)
SANE_RANGES: List[Tuple[str, float, float, str]] = [
    ("safety_margin", 0.5, 1.0, "LPR_SAFETY_MARGIN"),
    ("max_capital_per_position", 0.001, 10_000.0, "LPR_MAX_CAPITAL_PER_POSITION"),
    ("volume_liquidity_ratio", 0.0, 1_000.0, "LPR_VOLUME_LIQUIDITY_RATIO"),
    ("max_positions", 1, 20, "LPR_MAX_POSITIONS"),
    ("retry_max_attempts", 1, 10, "LPR_RETRY_MAX_ATTEMPTS"),
    ("retry_delay_sec", 0.0, 60.0, "LPR_RETRY_DELAY_SEC"),
    ("base_slippage_bps", 0, 5_000, "LPR_BASE_SLIPPAGE_BPS"),
    ("max_slippage_bps", 1, 5_000, "LPR_MAX_SLIPPAGE_BPS"),
    ("pacing_delay_sec", 0.0, 120.0, "LPR_PACING_DELAY_SEC"),
    ("quote_timeout_sec", 0.5, 60.0, "LPR_QUOTE_TIMEOUT_SEC"),
    ("http_timeout", 1.0, 120.0, "LPR_HTTP_TIMEOUT"),
    ("confirm_timeout_sec", 5.0, 300.0, "LPR_CONFIRM_TIMEOUT_SEC"),
    ("cycle_interval_sec", 30.0, 86_400.0, "LPR_CYCLE_INTERVAL_SEC"),
]

ENDPOINTS = ("rpc_url", "swap_api_url", "market_data_url", "wallet_address", "target_asset")


def check_endpoints(cfg) -> List[ValidationIssue]:
    return [
        ValidationIssue(name, f"'{name}' is missing or empty", ValidationSeverity.ERROR)
        for name in ENDPOINTS
        if not str(getattr(cfg, name, "") or "").strip()
    ]


def check_ranges(cfg) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for name, low, high, env in SANE_RANGES:
        raw = getattr(cfg, name, None)
        if raw is None:
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            issues.append(ValidationIssue(name, f"'{name}' is not a number: {raw!r}", ValidationSeverity.ERROR, raw))
            continue
        if low <= value <= high:
            continue
        bound = "at least" if value < low else "at most"
        issues.append(ValidationIssue(
            name,
            f"'{name}' = {value:g} is outside [{low:g}, {high:g}]",
            ValidationSeverity.ERROR,
            value,
            suggestion=f"set {env} to {bound} {low if value < low else high:g}",
        ))
    return issues


def check_escalation(cfg) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    max_slippage = getattr(cfg, "max_slippage_bps", 0)
    if getattr(cfg, "slippage_step_bps", 0) == 0 and getattr(cfg, "amount_reduction_step", 0.0) == 0:
        issues.append(ValidationIssue(
            "slippage_step_bps",
            "retries repeat identical parameters (no slippage widening, no amount shrinking)",
            ValidationSeverity.WARNING,
        ))
    attempts = getattr(cfg, "retry_max_attempts", 1)
    base = getattr(cfg, "base_slippage_bps", 0)
    step = getattr(cfg, "slippage_step_bps", 0)
    if step and base + (attempts - 1) * step < max_slippage:
        issues.append(ValidationIssue(
            "max_slippage_bps",
            f"the slippage cap is never reached within {attempts} attempt(s)",
            ValidationSeverity.INFO,
        ))
    return issues


def check_capital(cfg) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    paired = getattr(cfg, "max_paired_amount", 0.0)
    ceiling = getattr(cfg, "max_capital_per_position", 0.0)
    if paired and ceiling and paired < ceiling / 2:
        issues.append(ValidationIssue(
            "max_paired_amount",
            f"paired side is capped at {paired:g}, below half the per-position ceiling ({ceiling:g})",
            ValidationSeverity.WARNING,
            paired,
            suggestion="raise LPR_MAX_PAIRED_AMOUNT or lower LPR_MAX_CAPITAL_PER_POSITION",
        ))
    if getattr(cfg, "balance_reserve", 0.0) <= 0 and not getattr(cfg, "dry_run", False):
        issues.append(ValidationIssue(
            "balance_reserve",
            "no balance reserve: the whole target balance may be allocated, leaving nothing for fees",
            ValidationSeverity.WARNING,
            suggestion="set LPR_BALANCE_RESERVE",
        ))
    return issues


def check_live_mode(cfg) -> List[ValidationIssue]:
    if getattr(cfg, "dry_run", False):
        return []
    issues: List[ValidationIssue] = []
    if not getattr(cfg, "private_key", None):
        issues.append(ValidationIssue(
            "private_key",
            "no signing key configured; live cycles cannot submit transactions",
            ValidationSeverity.ERROR,
            suggestion="set LPR_PRIVATE_KEY or enable LPR_DRY_RUN",
        ))
    if getattr(cfg, "liquidity_program", None) and ":" not in cfg.liquidity_program:
        issues.append(ValidationIssue(
            "liquidity_program",
            f"'{cfg.liquidity_program}' is not an import path",
            ValidationSeverity.ERROR,
            cfg.liquidity_program,
            suggestion="set LPR_LIQUIDITY_PROGRAM=package.module:factory or unset it for DAMM v2",
        ))
    return issues


def check_notifications(cfg) -> List[ValidationIssue]:
    if not getattr(cfg, "notify_enabled", True):
        return []
    url = getattr(cfg, "notify_url", None)
    if not url:
        return [ValidationIssue(
            "notify_url",
            "notifications enabled but LPR_NOTIFY_URL is unset; summaries will only be logged",
            ValidationSeverity.INFO,
        )]
    if getattr(cfg, "notify_type", "") == "telegram" and not getattr(cfg, "notify_chat_id", None):
        return [ValidationIssue(
            "notify_chat_id",
            "telegram notifications need a chat id",
            ValidationSeverity.ERROR,
            suggestion="set LPR_NOTIFY_CHAT_ID",
        )]
    return []


DEFAULT_CHECKS: List[Check] = [
    check_endpoints,
    check_ranges,
    check_escalation,
    check_capital,
    check_live_mode,
    check_notifications,
]


class ConfigValidator:
    def __init__(self, checks: Optional[List[Check]] = None) -> None:
        self.checks: List[Check] = list(DEFAULT_CHECKS if checks is None else checks)

    def register_validator(self, check: Check) -> None:
        self.checks.append(check)

    def validate(self, cfg) -> ValidationResult:
        result = ValidationResult()
        for check in self.checks:
            try:
                result.issues.extend(check(cfg) or [])
            except Exception as exc:
                logger.warning(f"config check {getattr(check, '__name__', check)} failed: {exc}")
        return result


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """Validate, log every error and warning, and return whether startup may proceed."""
    log = logger_instance or logger
    result = validate_config(cfg)
    for issue in result.get_errors():
        log.error(issue.render())
    for issue in result.get_warnings():
        log.warning(issue.render())
    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")
    return result.valid
