#!/usr/bin/env python3
"""Main entrypoint — wires monitors, rules, and sinks and runs until stopped.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Validate configuration only (no monitor is started)
    python scripts/run.py --check

    # Fire one event through the triggers and exit (hook mode)
    python scripts/run.py --emit stop

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog
from pydantic import ValidationError

from bellwether.core.config import load_settings
from bellwether.core.logging import setup_logging
from bellwether.rules.compiler import compile_rules
from bellwether.rules.exceptions import ConfigurationError
from bellwether.runtime.factory import create_runtime
from bellwether.sinks.router import SinkRouter

logger = structlog.get_logger(__name__)

_PLAYBACK_GRACE_SECS = 10.0


async def emit_once(args: argparse.Namespace) -> int:
    """Send a single event through the pipeline and wait for its workflows."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    runtime = create_runtime(settings)
    try:
        decisions = await runtime.pipeline.emit(args.emit)
        if not decisions:
            logger.info("event_unhandled", event_type=args.emit)
        drained = await runtime.pipeline.drain(
            timeout=settings.defaults.workflow_timeout_secs,
        )
        if not drained:
            logger.warning("emit_drain_timeout", event_type=args.emit)
        if isinstance(runtime.sink, SinkRouter):
            await runtime.sink.wait_for_playback(timeout=_PLAYBACK_GRACE_SECS)
    finally:
        await runtime.shutdown()
    return 0


async def run(args: argparse.Namespace) -> int:
    """Start every monitor and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    runtime = create_runtime(settings)

    if not runtime.scheduler.loops:
        logger.error("no_monitors_configured")
        print(
            "No monitors configured. Add at least one entry under 'monitors' in "
            "config/settings.yaml, or use --emit to fire a single event.",
            file=sys.stderr,
        )
        await runtime.shutdown()
        return 1

    # ── Start everything ─────────────────────────────────────────
    await runtime.start()

    # ── Wait for shutdown signal ─────────────────────────────────
    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        runtime.stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await runtime.stop.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("shutting_down")
    report = runtime.status()
    await runtime.shutdown()

    logger.info(
        "stopped",
        entities=len(report.entities),
        monitors=len(report.monitors),
        workflows=report.workflows,
    )
    return 0


def check(args: argparse.Namespace) -> int:
    """Compile the configuration and report problems without starting anything."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)
    rules = compile_rules(settings)
    print(f"OK: {len(rules)} triggers, {len(settings.monitors)} monitors")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the bellwether monitor and alert pipeline.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML or JSON (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--check",
        action="store_true",
        help="Validate the configuration and exit",
    )
    mode.add_argument(
        "--emit",
        metavar="EVENT",
        default=None,
        help="Fire one event type through the triggers and exit",
    )
    args = parser.parse_args()

    try:
        if args.check:
            code = check(args)
        elif args.emit:
            code = asyncio.run(emit_once(args))
        else:
            code = asyncio.run(run(args))
    except (ConfigurationError, ValidationError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
