"""``fleetsim`` command: run one tenant's simulation from the terminal.

Telemetry and alerts are written as JSON lines to stdout (or POSTed to an
ingestion URL); logs go to stderr.

Examples::

    fleetsim --tenant demo --vehicles truck-1 truck-2 --interval 2 --duration 30
    OPENAI_API_KEY=... fleetsim --tenant demo --vehicles v1 --enrich --seed 7
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import AsyncExitStack

from fleetsim.config import DiagnosisConfig, SimulationConfig
from fleetsim.diagnosis.client import DiagnosisClient
from fleetsim.exceptions import FleetSimError
from fleetsim.registry import SessionRegistry
from fleetsim.scheduler import SimulationScheduler
from fleetsim.sink import HttpIngestSink, JsonLinesSink, PersistenceSink

_logger = logging.getLogger("fleetsim")

_POLL_SECONDS = 0.5


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="fleetsim", description="Simulate vehicle fleet telemetry")
    parser.add_argument("--tenant", default="default", help="Tenant id (default: %(default)s)")
    parser.add_argument("--vehicles", nargs="+", required=True, help="Vehicle ids to simulate")
    parser.add_argument("--interval", type=float, default=5.0, help="Seconds between ticks (default: %(default)s)")
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Stop after this many seconds; 0 runs until interrupted (default: %(default)s)",
    )
    parser.add_argument(
        "--error-probability",
        type=float,
        default=0.3,
        help="Fault bias in [0, 1] (default: %(default)s)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible runs")
    parser.add_argument("--history-size", type=int, default=5, help="Samples kept per vehicle for diagnosis context")
    parser.add_argument(
        "--enrich",
        action="store_true",
        help="Enrich alerts with the LLM provider (reads OPENAI_API_KEY and FLEETSIM_LLM_*)",
    )
    parser.add_argument("--ingest-url", default=None, help="POST records to this URL instead of stdout")
    parser.add_argument("--ingest-username", default=None)
    parser.add_argument("--ingest-password", default=None)
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: %(default)s)",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    try:
        config = SimulationConfig.parse(
            {
                "vehicles": args.vehicles,
                "interval_seconds": args.interval,
                "duration_seconds": args.duration,
                "error_probability": args.error_probability,
                "history_size": args.history_size,
                "seed": args.seed,
            }
        )
        diagnosis_config = DiagnosisConfig.from_env(enabled=True) if args.enrich else DiagnosisConfig.from_env()
    except FleetSimError as exc:
        print(f"fleetsim: {exc}", file=sys.stderr)
        return 2

    registry = SessionRegistry()
    async with AsyncExitStack() as stack:
        sink: PersistenceSink
        if args.ingest_url:
            sink = await stack.enter_async_context(
                HttpIngestSink(args.ingest_url, username=args.ingest_username, password=args.ingest_password)
            )
        else:
            sink = JsonLinesSink()

        diagnosis = None
        if diagnosis_config.enabled:
            diagnosis = await stack.enter_async_context(DiagnosisClient(diagnosis_config))
            if not diagnosis.enabled:
                _logger.warning("Enrichment requested but no API key is configured; alerts stay rule-based")

        scheduler = SimulationScheduler(sink, diagnosis=diagnosis, registry=registry)
        await scheduler.start(args.tenant, config)
        stats = scheduler.get_stats(args.tenant)
        try:
            while scheduler.is_active(args.tenant):
                await asyncio.sleep(_POLL_SECONDS)
                stats = scheduler.get_stats(args.tenant) or stats
        finally:
            await scheduler.stop_all()
            if diagnosis is not None:
                usage = diagnosis.usage_stats()
                _logger.info(
                    "Diagnosis usage: %d requests, %d cache hits, %d tokens, $%.4f",
                    usage.requests,
                    usage.cache_hits,
                    usage.total_tokens,
                    usage.total_cost_usd,
                )
            if stats is not None:
                _logger.info("Final stats: %s", stats.model_dump())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
