"""
Command-line interface for the dossier engine.

Subcommands:
    once        run a single refresh cycle and print the snapshot as JSON
    run         refresh on a fixed interval until interrupted
    serve       run the digest server
    check-keys  report which API keys are configured
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .config import secrets
from .config.settings import ConfigValidationError, load_settings
from .digest.client import DigestClient
from .ingest.health import HealthTracker
from .live.runner import DossierEngine, RefreshScheduler
from .live.snapshot import FileBlobStore, Snapshot, SnapshotCache
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def build_engine(settings: Dict[str, Any], use_digest: bool = True) -> DossierEngine:
    snapshot_settings = settings["snapshot"]
    digest_settings = settings["digest"]

    cache = SnapshotCache(FileBlobStore(snapshot_settings["store_dir"]), snapshot_settings["key"])
    digest_client = None
    if use_digest and digest_settings.get("enabled", True):
        digest_client = DigestClient(digest_settings["base_url"], timeout=digest_settings["timeout_seconds"])

    return DossierEngine(settings=settings, cache=cache, digest_client=digest_client)


def render_snapshot(snapshot: Snapshot, health: Optional[HealthTracker] = None) -> Dict[str, Any]:
    """Display view of a snapshot (history omitted), with upstream health when given."""
    fields = {}
    for key, f in snapshot.fields.items():
        fields[key] = {
            "value": f.value,
            "source": f.source,
            "change_pct": f.change_pct,
            "change_mode": f.change_mode.value,
            "stale": f.stale,
            "last_observed_at": f.last_observed_at,
            "series_points": len(f.series),
        }
    indexes = {
        key: {
            "score": ix.score,
            "change_pct": ix.change_pct,
            "change_mode": ix.change_mode.value,
            "spike_count": ix.spike_count,
            "contributors": ix.contributors,
        }
        for key, ix in snapshot.indexes.items()
    }
    view = {
        "generated_at": snapshot.generated_at,
        "cycle": snapshot.cycle,
        "error": snapshot.error,
        "fields": fields,
        "indexes": indexes,
        "digest": snapshot.digest.to_wire() if snapshot.digest else None,
    }
    if health is not None:
        view["upstream_health"] = health.to_dict()
    return view


def cmd_once(args: argparse.Namespace, settings: Dict[str, Any]) -> int:
    """Run one refresh cycle."""
    engine = build_engine(settings, use_digest=not args.no_digest)
    engine.warm_start()
    snapshot = engine.refresh(force_digest=args.force_digest)
    print(json.dumps(render_snapshot(snapshot, engine.health), indent=2))
    return 0 if snapshot.error is None else 2


def cmd_run(args: argparse.Namespace, settings: Dict[str, Any]) -> int:
    """Refresh periodically until Ctrl-C."""
    engine = build_engine(settings, use_digest=not args.no_digest)
    engine.warm_start()
    interval = args.interval or settings["refresh_interval_seconds"]
    scheduler = RefreshScheduler(engine, interval_seconds=interval)
    scheduler.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping refresh scheduler")
    finally:
        scheduler.stop(timeout=settings["fetch_timeout_seconds"] + 5)
    return 0


def cmd_serve(args: argparse.Namespace, settings: Dict[str, Any]) -> int:
    """Run the digest server with the loaded settings."""
    import uvicorn

    from .api.server import create_app

    app = create_app(settings)
    logger.info(f"Digest server using cache {settings['digest']['cache_path']} and model {settings['digest']['model']}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


def cmd_check_keys(args: argparse.Namespace, settings: Dict[str, Any]) -> int:
    """Report API key status."""
    return secrets._cli_check()


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="dossier",
        description="Multi-source market and rate dossier"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config YAML (defaults to $DOSSIER_CONFIG or config/dossier.yaml)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    once_parser = subparsers.add_parser("once", help="Run a single refresh cycle")
    once_parser.add_argument("--no-digest", action="store_true", help="Skip the daily brief")
    once_parser.add_argument("--force-digest", action="store_true", help="Ask the digest server to regenerate")

    run_parser = subparsers.add_parser("run", help="Refresh on a fixed interval")
    run_parser.add_argument("--interval", type=float, help="Seconds between cycles")
    run_parser.add_argument("--no-digest", action="store_true", help="Skip the daily brief")

    serve_parser = subparsers.add_parser("serve", help="Run the digest server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8787, help="Port")

    subparsers.add_parser("check-keys", help="Check API key configuration")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = load_settings(Path(args.config) if args.config else None)
    except ConfigValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    commands = {
        "once": cmd_once,
        "run": cmd_run,
        "serve": cmd_serve,
        "check-keys": cmd_check_keys,
    }
    return commands[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
