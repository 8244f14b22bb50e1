"""
Entry point wiring all components.

    python -m lp_rebalancer.main              # interval loop
    python -m lp_rebalancer.main --once       # one cycle
    python -m lp_rebalancer.main --preview    # plan only
    python -m lp_rebalancer.main --clear-all  # close every position
    python -m lp_rebalancer.main --positions  # print open positions
    python -m lp_rebalancer.main --balances   # print wallet balances
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

from lp_rebalancer.app import build_engine, run_scheduled
from lp_rebalancer.config.config import Settings
from lp_rebalancer.config.config_validator import validate_and_log
from lp_rebalancer.core.errors import EngineError, PhaseFailedError
from lp_rebalancer.infra.logging_cfg import build_logger
from lp_rebalancer.ledger.position_view import PositionLedgerView
from lp_rebalancer.monitoring.alerting import Notifier, NotifySeverity, format_cycle_summary
from lp_rebalancer.monitoring.metrics import EngineMetrics


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="lprebal", description="Liquidity position rebalancer")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--once", action="store_true", help="run a single rebalancing cycle and exit")
    group.add_argument("--preview", action="store_true", help="compute and print the plan without executing")
    group.add_argument("--clear-all", action="store_true", help="close every open position and exit")
    group.add_argument("--positions", action="store_true", help="print open positions and exit")
    group.add_argument("--balances", action="store_true", help="print wallet balances and exit")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = Settings.load()
    log = build_logger("lprebal", level=cfg.log_level, file_path=cfg.log_file)

    read_only = args.preview or args.positions or args.balances
    if not validate_and_log(cfg, log) and not read_only:
        log.error("Configuration validation failed, exiting")
        return 1

    metrics = EngineMetrics()
    if cfg.metrics_port > 0:
        metrics.serve(cfg.metrics_port)
    notifier = Notifier.from_settings(cfg)
    engine = build_engine(cfg, metrics=metrics, notifier=notifier, logger=log)
    controller = engine.controller

    try:
        if args.positions:
            snapshot = await controller.position_view.snapshot()
            print(PositionLedgerView.describe(snapshot))
            return 0
        if args.balances:
            native = await engine.ledger.get_balance(engine.context.wallet_address)
            print(f"native: {native / 1e9:.9f}")
            for bal in await engine.ledger.get_token_balances(engine.context.wallet_address):
                print(f"{bal.mint}: {bal.ui_amount}")
            return 0
        if args.preview:
            outcome = await controller.preview()
            print(format_cycle_summary(outcome))
            return 0
        if args.clear_all:
            outcome = await controller.clear_all()
            log.info(json.dumps({"event": "clear_all_done", **outcome.to_dict()}))
            return 0
        if args.once:
            outcome = await controller.run_cycle()
            log.info(json.dumps({"event": "cycle_ok", **outcome.to_dict()}))
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass
        log.info(json.dumps({"event": "startup", "wallet": cfg.wallet_address, "interval_sec": cfg.cycle_interval_sec}))
        await notifier.emit("LP rebalancer is online.")
        await run_scheduled(controller, cfg.cycle_interval_sec, stop)
        log.info("Shutdown signal received, cleaning up...")
        await notifier.emit("LP rebalancer shutting down.", NotifySeverity.WARNING)
        return 0
    except PhaseFailedError as exc:
        log.error(json.dumps({"event": "phase_failed", "phase": exc.phase, **exc.outcome.to_dict()}))
        return 2
    except EngineError as exc:
        log.error(json.dumps({"event": "engine_error", "error_type": type(exc).__name__, "error": str(exc)}))
        return 1
    finally:
        await engine.close()
        log.info("Shutdown complete")


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nStopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
