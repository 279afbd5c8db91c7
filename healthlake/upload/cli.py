"""healthlake-upload: push a local AutoSync tree or a live source to a healthlake server."""

import argparse
import logging
import os
import signal
import sys
import threading
from datetime import datetime, timedelta, timezone

from healthlake.config import settings
from healthlake.decoder import decode_file
from healthlake.errors import HealthlakeError
from healthlake.importer import resolve_autosync
from healthlake.timeutil import parse_day
from healthlake.upload.client import IngestClient
from healthlake.upload.live import DEFAULT_PORT, LiveSourceClient
from healthlake.upload.state import StateStore
from healthlake.upload.uploader import DEFAULT_BATCH_SIZE, UploadStats, Uploader

logger = logging.getLogger("healthlake.upload")

DEFAULT_STATE_DIR = "~/.healthlake"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="healthlake-upload",
        description="Upload Health Auto Export data to a healthlake server, resuming where the last run stopped.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--path", help="AutoSync directory or a parent of it (file mode)")
    source.add_argument("--live-host", help="Health Auto Export TCP server host (live mode)")
    parser.add_argument("--live-port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--server", default=os.environ.get("HEALTHLAKE_SERVER"), help="healthlake base URL")
    parser.add_argument("--api-key", default=os.environ.get("HEALTHLAKE_API_KEY"))
    parser.add_argument("--lzfse", default=settings.LZFSE_BINARY, help="lzfse binary")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="data points per metric payload")
    parser.add_argument("--start", help="live mode: first day (YYYY-MM-DD), default 30 days ago")
    parser.add_argument("--end", help="live mode: last day, exclusive (YYYY-MM-DD), default tomorrow")
    parser.add_argument("--chunk-days", type=int, default=7, help="live mode: days per query")
    parser.add_argument("--state-dir", default=DEFAULT_STATE_DIR)
    parser.add_argument("--dry-run", action="store_true", help="convert and count without sending")
    return parser


def _day_start(value: str) -> datetime:
    return datetime.combine(parse_day(value), datetime.min.time(), tzinfo=timezone.utc)


def live_range(args, now: datetime = None):
    now = now or datetime.now(timezone.utc)
    today = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    start = _day_start(args.start) if args.start else today - timedelta(days=30)
    end = _day_start(args.end) if args.end else today + timedelta(days=1)
    return start, end


def print_summary(stats: UploadStats) -> None:
    logger.info(
        "Upload stats: files_total=%d files_uploaded=%d files_skipped=%d files_errored=%d "
        "metric_points=%d sleep_stages=%d workouts=%d route_points=%d hr_correlated=%d "
        "sets_files=%d live_metric_chunks=%d live_workout_chunks=%d bytes_sent=%d",
        stats.files_total,
        stats.files_uploaded,
        stats.files_skipped,
        stats.files_errored,
        stats.metric_points_sent,
        stats.sleep_stages_sent,
        stats.workouts_sent,
        stats.route_points_sent,
        stats.hr_points_correlated,
        stats.sets_files_sent,
        stats.live_metric_chunks,
        stats.live_workout_chunks,
        stats.bytes_sent,
    )
    if stats.rejected_metrics:
        logger.info("Rejected metrics (not in server allowlist): %s", ", ".join(stats.rejected_metrics))


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL)

    if not args.dry_run and not (args.server and args.api_key):
        logger.error("--server and --api-key (or HEALTHLAKE_SERVER / HEALTHLAKE_API_KEY) are required")
        return 2

    if args.live_host:
        try:
            start, end = live_range(args)
        except ValueError as e:
            logger.error("Invalid date: %s", e)
            return 2

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    state = StateStore(args.state_dir)
    client = IngestClient(args.server or "", args.api_key or "")
    uploader = None
    try:
        if args.live_host:
            uploader = Uploader(client, state, dry_run=args.dry_run, stop_event=stop)
            live = LiveSourceClient(args.live_host, args.live_port)
            stats = uploader.run_live(live, start, end, args.chunk_days)
        else:
            autosync = resolve_autosync(args.path)
            uploader = Uploader(
                client,
                state,
                autosync,
                decoder=lambda path: decode_file(path, args.lzfse),
                dry_run=args.dry_run,
                batch_size=args.batch_size,
                stop_event=stop,
            )
            stats = uploader.run()
    except HealthlakeError as e:
        logger.error("Upload failed: %s", e)
        stats = e.stats or (uploader.stats if uploader else None)
        if stats is not None:
            print_summary(stats)
        return 1
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1
    finally:
        client.close()
        state.close()

    print_summary(stats)
    logger.info("Upload complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
