"""Wiki graph snapshot service: process bootstrap and command line.

What this does:
- Crawls every page of a MediaWiki site once a day into a new build generation
  (pages + internal link graph) stored via SQLAlchemy.
- Keeps exactly one generation active for readers; prunes old archived ones.
- Serves a small HTTP API (FastAPI) for live data-set queries, stored graph reads and
  manual build triggers.

Commands:
  python main.py serve
  python main.py build
  python main.py cleanup --keep-last 3
  python main.py export-dot --out graph.dot [--build-id ID]

Configuration comes from WIKI_* environment variables; see `config.py`.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

import uvicorn

from build_service import BuildService
from build_store import SqlBuildStore
from config import AppConfig, load_app_config_from_env
from create_dot import export_dot
from dataset_service import DataSetService
from http_api import AppResources, create_app
from mediawiki_api import MediaWikiClient
from models import init_db, make_engine
from page_store import SqlPageStore
from scheduler import BuildScheduler

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(format=LOG_FORMAT, datefmt=DATE_FORMAT, level=level)

    # Unify uvicorn loggers with app format
    for uvicorn_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(uvicorn_logger_name)
        uvicorn_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.propagate = False


def build_resources(config: AppConfig) -> AppResources:
    """Construct every service once; they are passed down, never looked up globally."""

    engine = make_engine(config.db_path, database_url=config.database_url)
    init_db(engine)

    page_store = SqlPageStore(engine, base_url=config.wiki.base_url)
    build_store = SqlBuildStore(engine)
    wiki_client = MediaWikiClient.from_config(config.wiki)

    build_service = BuildService(
        wiki_client,
        page_store,
        build_store,
        fetch_concurrency=config.build.fetch_concurrency,
        fetch_timeout=config.build.fetch_timeout,
    )
    scheduler = BuildScheduler(build_service, cron=config.build.cron, keep_last=config.build.keep_builds)

    return AppResources(
        dataset_service=DataSetService(wiki_client, concurrency=config.build.fetch_concurrency),
        build_service=build_service,
        scheduler=scheduler,
        page_store=page_store,
        build_store=build_store,
        build_on_startup=config.build.run_on_startup,
    )


def serve(config: AppConfig) -> None:
    app = create_app(build_resources(config))
    logger.info(f"Server running on port {config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


def run_build(config: AppConfig) -> int:
    resources = build_resources(config)
    if resources.scheduler is None:
        print("Build scheduler is not configured")
        return 1

    report = asyncio.run(resources.scheduler.run_now())
    if not report.succeeded:
        print(f"Build {report.build_id} failed: {report.error_message}")
        return 1

    print(
        f"Build {report.build_id} completed: "
        f"pages={report.pages_count} connections={report.connections_count}"
    )
    return 0


def run_cleanup(config: AppConfig, keep_last: int) -> int:
    resources = build_resources(config)
    deleted = resources.build_store.cleanup_old_builds(keep_last)
    print(f"Cleanup completed: removed={len(deleted)} keep_last={keep_last}")
    return 0


def run_export_dot(config: AppConfig, out: str, build_id: str | None) -> int:
    resources = build_resources(config)
    path = export_dot(resources.page_store, resources.build_store, out, build_id=build_id)
    print(f"Wrote {path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Daily wiki page + link graph snapshots")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the HTTP API and the daily build scheduler")
    subparsers.add_parser("build", help="Run one build now, in the foreground")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old archived builds")
    cleanup_parser.add_argument("--keep-last", type=int, default=None, help="Archived builds to keep")

    export_parser = subparsers.add_parser("export-dot", help="Export a build's graph to Graphviz DOT")
    export_parser.add_argument("--out", required=True, help="Output DOT file path")
    export_parser.add_argument("--build-id", default=None, help="Build to export (default: active build)")

    args = parser.parse_args(argv)

    config = load_app_config_from_env()
    configure_logging(config.log_level)

    if args.command == "serve":
        serve(config)
        return 0
    if args.command == "build":
        return run_build(config)
    if args.command == "cleanup":
        keep_last = config.build.keep_builds if args.keep_last is None else args.keep_last
        if keep_last < 0:
            parser.error("--keep-last must be >= 0")
        return run_cleanup(config, keep_last)
    return run_export_dot(config, args.out, args.build_id)


if __name__ == "__main__":
    raise SystemExit(main())
