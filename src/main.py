# src/main.py — v1
"""CLI entry point — run, fingerprint, cache commands.

Usage:
    shipline run <pipeline.yaml> --branch main --commit <sha> [options]
    shipline fingerprint <pipeline.yaml> --branch main --commit <sha>
    shipline cache list
    shipline cache invalidate <prefix>

Exit status of ``run`` is 0 only when the verdict is success.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from shipline.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from shipline.config.settings import ConfigurationError, load_settings
    from shipline.logging.logger import setup_logging_from_settings

    try:
        settings = load_settings()
    except (ConfigurationError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    setup_logging_from_settings(settings, verbose=args.verbose)
    args.settings = settings

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shipline",
        description=f"shipline v{__version__} — multi-service build and deploy pipelines",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Run a pipeline for one trigger")
    p_run.add_argument("pipeline", type=Path, help="Path to pipeline definition (YAML)")
    _add_trigger_args(p_run)
    p_run.add_argument(
        "--report", type=Path, default=None,
        help="Write the full run result as JSON to this path",
    )
    p_run.add_argument(
        "--report-csv", type=Path, default=None,
        help="Write one row per stage as CSV to this path",
    )
    p_run.add_argument(
        "--no-cache", action="store_true",
        help="Run every stage; do not read or write the artifact cache",
    )
    p_run.set_defaults(func=_cmd_run)

    # --- fingerprint ---
    p_fp = subparsers.add_parser(
        "fingerprint", help="Print the cache key of every stage without running",
    )
    p_fp.add_argument("pipeline", type=Path, help="Path to pipeline definition (YAML)")
    _add_trigger_args(p_fp)
    p_fp.set_defaults(func=_cmd_fingerprint)

    # --- cache ---
    p_cache = subparsers.add_parser("cache", help="Inspect or invalidate the artifact cache")
    cache_sub = p_cache.add_subparsers(dest="cache_command")
    p_list = cache_sub.add_parser("list", help="List cache entries, least recently used first")
    p_list.set_defaults(func=_cmd_cache_list)
    p_inv = cache_sub.add_parser("invalidate", help="Drop entries whose key starts with prefix")
    p_inv.add_argument("prefix", help="Key prefix, e.g. 'api:' or 'api:build:'")
    p_inv.set_defaults(func=_cmd_cache_invalidate)

    return parser


def _add_trigger_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--branch", required=True, help="Branch that triggered the run")
    parser.add_argument("--commit", required=True, help="Commit identifier")
    parser.add_argument(
        "--event", default="push", choices=["push", "pull_request", "manual"],
        help="Trigger event (default: push)",
    )
    parser.add_argument("--run-id", default=None, help="Explicit run identifier")


async def _cmd_run(args: argparse.Namespace) -> int:
    """Execute a pipeline run."""
    from shipline.api.facade import build_orchestrator
    from shipline.config.pipeline_loader import load_pipeline
    from shipline.core.errors import PipelineDefinitionError
    from shipline.core.models import TriggerContext
    from shipline.report.exporter import (
        export_run_csv,
        export_run_json,
        export_run_summary,
    )

    settings = args.settings
    if args.no_cache:
        settings = settings.model_copy(update={"cache_enabled": False})

    try:
        definition = load_pipeline(args.pipeline, settings)
    except (OSError, PipelineDefinitionError) as exc:
        logger.error("Cannot load pipeline: %s", exc)
        return 2

    trigger = TriggerContext(branch=args.branch, commit=args.commit, event=args.event)
    run_spec = definition.to_run_spec(trigger, run_id=args.run_id)
    orchestrator = build_orchestrator(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.cancel, f"received {sig.name}")
        except (NotImplementedError, RuntimeError):
            pass  # Windows or non-main thread

    result = await orchestrator.run(run_spec)

    if args.report:
        export_run_json(result, args.report)
    if args.report_csv:
        export_run_csv(result, args.report_csv)
    print(export_run_summary(result))
    return result.exit_code


async def _cmd_fingerprint(args: argparse.Namespace) -> int:
    """Print stage cache keys for the given trigger."""
    from shipline.api.facade import build_orchestrator
    from shipline.config.pipeline_loader import load_pipeline
    from shipline.core.models import TriggerContext
    from shipline.pipeline.context import RunContext
    from shipline.pipeline.trigger import apply_trigger_policy

    settings = args.settings.model_copy(update={"cache_enabled": False})
    definition = load_pipeline(args.pipeline, settings)
    trigger = TriggerContext(branch=args.branch, commit=args.commit, event=args.event)
    run_spec = definition.to_run_spec(trigger, run_id=args.run_id)
    services, _ = apply_trigger_policy(run_spec)

    executor = build_orchestrator(settings).executor
    run = RunContext(run_id=run_spec.run_id, trigger=trigger, policy=run_spec.policy)
    for service in services:
        for stage_name, key in executor.plan(service, run).items():
            print(f"{service.id}\t{stage_name}\t{key}")
    return 0


async def _cmd_cache_list(args: argparse.Namespace) -> int:
    """List cache entries."""
    from shipline.cache.cache_factory import create_cache_store

    store = create_cache_store(args.settings)
    entries = await store.entries()
    for entry in entries:
        print(
            f"{entry.key}\t{entry.artifact.kind}\t{entry.artifact.reference}\t"
            f"hits={entry.hits}\t{entry.last_accessed_at.isoformat()}"
        )
    print(f"\n{len(entries)} entries", file=sys.stderr)
    return 0


async def _cmd_cache_invalidate(args: argparse.Namespace) -> int:
    """Drop cache entries by key prefix."""
    from shipline.cache.cache_factory import create_cache_store

    store = create_cache_store(args.settings)
    removed = await store.invalidate(args.prefix)
    print(f"Invalidated {removed} entries matching '{args.prefix}'")
    return 0


if __name__ == "__main__":
    sys.exit(main())
