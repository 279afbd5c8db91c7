"""healthlake-import: load an AutoSync export tree into the database."""

import argparse
import asyncio
import logging
import sys

from healthlake.config import settings
from healthlake.database import create_store, create_tables
from healthlake.decoder import decode_file
from healthlake.errors import HealthlakeError
from healthlake.importer import ImportPipeline, ImportStats, resolve_autosync
from healthlake.records import UserContext

logger = logging.getLogger("healthlake.import")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="healthlake-import",
        description="Import a Health Auto Export AutoSync directory (.hae files).",
    )
    parser.add_argument("--path", required=True, help="AutoSync directory or a parent of it")
    parser.add_argument("--database-url", default=settings.DATABASE_URL)
    parser.add_argument("--user-id", type=int, default=settings.DEFAULT_USER_ID)
    parser.add_argument("--lzfse", default=settings.LZFSE_BINARY, help="lzfse binary")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="report counts without inserting into the database",
    )
    return parser


def print_stats(stats: ImportStats) -> None:
    logger.info(
        "Import stats: files_processed=%d files_skipped=%d files_errored=%d "
        "metrics_inserted=%d metrics_duplicated=%d sleep_stages_inserted=%d "
        "sleep_sessions_created=%d workouts_inserted=%d workouts_duplicated=%d "
        "route_points_inserted=%d hr_correlated=%d",
        stats.files_processed,
        stats.files_skipped,
        stats.files_errored,
        stats.metrics_inserted,
        stats.metrics_duplicated,
        stats.sleep_stages_inserted,
        stats.sleep_sessions_created,
        stats.workouts_inserted,
        stats.workouts_duplicated,
        stats.route_points_inserted,
        stats.hr_correlated,
    )
    if stats.rejected_metrics:
        logger.info("Rejected metrics (not in allowlist): %s", ", ".join(stats.rejected_metrics))


async def run(args) -> int:
    autosync = resolve_autosync(args.path)
    engine, store = create_store(args.database_url)
    try:
        await create_tables(engine)
        await store.seed_allowlist(settings.ALLOWLIST)
        if args.dry_run:
            logger.info("DRY RUN mode: no data will be written to the database")

        pipeline = ImportPipeline(
            store,
            decoder=lambda path: decode_file(path, args.lzfse),
            dry_run=args.dry_run,
        )
        try:
            stats = await pipeline.run(autosync, UserContext(args.user_id))
        except HealthlakeError as e:
            logger.error("Import failed: %s", e)
            print_stats(e.stats or pipeline.stats)
            return 1
        print_stats(stats)
        logger.info("Import complete")
        return 0
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL)
    try:
        return asyncio.run(run(args))
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
