from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any

from ghleaderboard.adapters.github.search import GitHubSearchAdapter
from ghleaderboard.config.loader import load_config
from ghleaderboard.core.errors import (
    AccessDenied,
    AdapterError,
    ConfigError,
    UnknownPeriodError,
    UpstreamError,
)
from ghleaderboard.engine.export import write_documents
from ghleaderboard.engine.orchestrator import BuildOrchestrator
from ghleaderboard.engine.service import LeaderboardService
from ghleaderboard.logging.setup import configure_logging
from ghleaderboard.plugins.registry import build_cache_store


def build_service(config_path: str) -> tuple[LeaderboardService, GitHubSearchAdapter]:
    config = load_config(config_path)
    configure_logging(config.runtime.log_level)
    logger = logging.getLogger("CLI")
    logger.info(
        "Loaded configuration",
        extra={"org": config.github.org, "environment": config.runtime.environment.value},
    )

    source = GitHubSearchAdapter(
        token=config.github.token,
        org=config.github.org,
        api_base=str(config.github.api_base),
        request_delay=config.github.request_delay_seconds,
        chunk_days=config.github.chunk_days,
        per_page=config.github.per_page,
        timeout=config.github.timeout_seconds,
    )
    store = build_cache_store(config.runtime)
    orchestrator = BuildOrchestrator(source, config)
    return LeaderboardService(config, orchestrator, store), source


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


async def _run(args: argparse.Namespace) -> None:
    service, source = build_service(args.config)
    logger = logging.getLogger("CLI")
    wait = False
    try:
        await service.start()
        if args.command == "build":
            _emit({"rebuilt": await service.rebuild_all()})
        elif args.command == "read":
            wait = args.wait_refresh
            result = await service.read(
                args.period,
                force=args.force,
                org=args.org,
                lookback_days=args.lookback_days,
            )
            logger.info(
                "Read leaderboard",
                extra={
                    "period": result.key,
                    "state": result.state.value,
                    "built_at": result.built_at.isoformat(),
                    "rebuilt": result.rebuilt,
                    "refresh_scheduled": result.refresh_scheduled,
                    "fallback": result.fallback,
                },
            )
            _emit(result.document)
        elif args.command == "recent":
            wait = args.wait_refresh
            _emit((await service.recent(force=args.force)).document)
        elif args.command == "status":
            if args.period:
                _emit(await service.status(args.period))
            else:
                _emit(await service.status_all())
        elif args.command == "ping":
            _emit(await service.ping())
        elif args.command == "derive":
            _emit({"derived": await service.rederive()})
        elif args.command == "export":
            documents = await service.cached_documents()
            if not documents:
                logger.warning("Nothing cached yet; run build first")
            paths = write_documents(documents, args.output)
            _emit({"written": [str(path) for path in paths]})
    finally:
        await service.close(wait=wait)
        await source.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="GitHub organization activity leaderboard")
    parser.add_argument("--config", required=True, help="Path to config YAML file")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("build", help="Fetch from GitHub and rebuild every cached document")
    read_p = sub.add_parser("read", help="Read one period through the cache")
    read_p.add_argument("period", help="Period name (e.g. week, month, year)")
    read_p.add_argument("--force", action="store_true", help="Always rebuild before serving")
    read_p.add_argument("--org", default=None, help="Development only: read another organization")
    read_p.add_argument(
        "--lookback-days", type=int, default=None, help="Development only: shorten the canonical window"
    )
    read_p.add_argument(
        "--wait-refresh", action="store_true", help="Let a scheduled background rebuild finish before exiting"
    )
    recent_p = sub.add_parser("recent", help="Read the recent-activities feed through the cache")
    recent_p.add_argument("--force", action="store_true", help="Always rebuild before serving")
    recent_p.add_argument("--wait-refresh", action="store_true", help="Let a scheduled background rebuild finish")
    status_p = sub.add_parser("status", help="Cache state without ever rebuilding")
    status_p.add_argument("period", nargs="?", default=None, help="Period name (default: all documents)")
    sub.add_parser("ping", help="Health check")
    sub.add_parser("derive", help="Re-derive shorter periods from the cached canonical document")
    export_p = sub.add_parser("export", help="Write cached documents as JSON files")
    export_p.add_argument("--output", required=True, help="Output directory")

    args = parser.parse_args()
    try:
        asyncio.run(_run(args))
    except (ConfigError, AdapterError, AccessDenied, UnknownPeriodError, UpstreamError) as exc:
        logging.getLogger("CLI").error("Fatal error: %s", exc)
        raise SystemExit(1) from exc
    except Exception as exc:  # noqa: BLE001
        logging.getLogger("CLI").exception("Unhandled error")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
