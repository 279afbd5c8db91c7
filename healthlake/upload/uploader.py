"""Resumable upload of an AutoSync tree (file mode) or the live TCP source (live mode)."""

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from healthlake.decoder import decode_file
from healthlake.errors import DecodeError, ParseError, PersistenceError, TransportError
from healthlake.parsers import HEART_RATE_METRIC, SLEEP_METRIC, FileKind, parse_file
from healthlake.upload.convert import HRPoint, convert_metric, convert_workout
from healthlake.upload.live import LIVE_METRICS, LiveMetric
from healthlake.upload.state import StateStore, hash_file
from healthlake.workouts import workout_id_from_filename

logger = logging.getLogger(__name__)

METRICS_DIR = "HealthMetrics"
WORKOUTS_DIR = "Workouts"
ROUTES_DIR = "Routes"
STRENGTH_DIR = "AlphaProgression"

DEFAULT_BATCH_SIZE = 2000
WORKOUTS_PER_PAYLOAD = 5
LIVE_CURSOR = "live_last_synced"
CURSOR_FORMAT = "%Y-%m-%d"


@dataclass
class UploadStats:
    files_total: int = 0
    files_uploaded: int = 0
    files_skipped: int = 0
    files_errored: int = 0
    metric_points_sent: int = 0
    sleep_stages_sent: int = 0
    workouts_sent: int = 0
    route_points_sent: int = 0
    hr_points_correlated: int = 0
    sets_files_sent: int = 0
    live_metric_chunks: int = 0
    live_workout_chunks: int = 0
    bytes_sent: int = 0
    rejected_metrics: List[str] = field(default_factory=list)

    def reject(self, name: str):
        if name not in self.rejected_metrics:
            self.rejected_metrics.append(name)

    def as_dict(self):
        return asdict(self)


@dataclass
class PendingFile:
    rel_path: str
    size: int
    hash: str


class Uploader:
    def __init__(
        self,
        client,
        state: StateStore,
        autosync: Optional[Path] = None,
        decoder: Callable[[Path], bytes] = decode_file,
        dry_run: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stop_event: Optional[threading.Event] = None,
    ):
        self.client = client
        self.state = state
        self.autosync = Path(autosync) if autosync is not None else None
        self.decoder = decoder
        self.dry_run = dry_run
        self.batch_size = max(batch_size, 1)
        self.stop_event = stop_event or threading.Event()
        self.stats = UploadStats()
        self.hr_points: List[HRPoint] = []

    # ------------------------------------------------------------------
    # File mode
    # ------------------------------------------------------------------
    def run(self) -> UploadStats:
        """Upload every file not yet acknowledged by the server.

        Raises TransportError (with ``stats`` attached) when the server
        cannot be reached; files sent before the failure stay marked.
        The stop event is checked between metric directories, workout
        payloads and strength files.
        """
        try:
            allowlist = None
            if not self.dry_run:
                allowlist = self.client.fetch_allowlist()
                logger.info("Fetched allowlist: %d metrics", len(allowlist))

            metrics_dir = self.autosync / METRICS_DIR
            if metrics_dir.is_dir():
                self.upload_metrics(metrics_dir, allowlist)

            self.hr_points.sort(key=lambda p: p.time)

            workouts_dir = self.autosync / WORKOUTS_DIR
            if workouts_dir.is_dir():
                self.upload_workouts(workouts_dir, self.autosync / ROUTES_DIR)

            strength_dir = self.autosync / STRENGTH_DIR
            if strength_dir.is_dir():
                self.upload_strength(strength_dir)
        except TransportError as e:
            e.stats = self.stats
            raise
        return self.stats

    def _check(self, path: Path) -> Tuple[bool, Optional[PendingFile]]:
        """(already uploaded, pending record); the record is None after an error."""
        self.stats.files_total += 1
        rel = path.relative_to(self.autosync).as_posix()
        try:
            size = path.stat().st_size
            known = self.state.lookup(rel)
            # Same path and size: trust it without reading the file
            if known is not None and known.size == size:
                self.stats.files_skipped += 1
                return True, None
            digest = hash_file(path)
            if self.state.is_uploaded(rel, size, digest):
                self.stats.files_skipped += 1
                return True, None
        except (OSError, PersistenceError) as e:
            logger.warning("State check failed for %s: %s", path, e)
            self.stats.files_errored += 1
            return False, None
        return False, PendingFile(rel, size, digest)

    def _mark(self, files: List[PendingFile]):
        for f in files:
            if not self.dry_run:
                try:
                    self.state.mark_uploaded(f.rel_path, f.size, f.hash)
                except PersistenceError as e:
                    logger.warning("Failed to mark %s uploaded: %s", f.rel_path, e)
            self.stats.files_uploaded += 1

    def _send(self, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.stats.bytes_sent += len(body)
        if self.dry_run:
            return
        result = self.client.send_raw(body)
        for name in result.get("rejected_metrics") or []:
            self.stats.reject(name)

    def _stopping(self) -> bool:
        if self.stop_event.is_set():
            logger.info("Stop requested; remaining files are left for the next run")
            return True
        return False

    def upload_metrics(self, metrics_dir: Path, allowlist=None):
        for metric_dir in sorted(p for p in metrics_dir.iterdir() if p.is_dir()):
            if self._stopping():
                return
            name = metric_dir.name
            if allowlist is not None and name not in allowlist:
                self.stats.reject(name)
                logger.info("Skipping metric %s (not in server allowlist)", name)
                continue
            self.upload_metric_dir(metric_dir, name)

    def upload_metric_dir(self, metric_dir: Path, metric_name: str):
        points: List[Dict[str, Any]] = []
        hr_points: List[HRPoint] = []
        pending: List[PendingFile] = []
        units = ""

        for path in sorted(metric_dir.glob("*.hae")):
            done, record = self._check(path)
            if done or record is None:
                continue
            try:
                metric_file = parse_file(FileKind.METRIC, self.decoder(path))
            except (DecodeError, ParseError) as e:
                logger.warning("Skipping %s: %s", path, e)
                self.stats.files_errored += 1
                continue

            if not metric_file.data:
                # Nothing to send; remember it so it is not decoded again
                self.stats.files_skipped += 1
                if not self.dry_run:
                    self.state.mark_uploaded(record.rel_path, record.size, record.hash)
                continue

            metric, file_hr = convert_metric(metric_file, metric_name)
            points.extend(metric["data"])
            hr_points.extend(file_hr)
            units = units or metric["units"]
            pending.append(record)

        if not points:
            self._mark(pending)
            return

        for i in range(0, len(points), self.batch_size):
            batch = points[i:i + self.batch_size]
            payload = {"data": {"metrics": [{"name": metric_name, "units": units, "data": batch}]}}
            if self.dry_run:
                logger.info("dry-run: would send %s (%d points)", metric_name, len(batch))
            self._send(payload)
            if metric_name == SLEEP_METRIC:
                self.stats.sleep_stages_sent += len(batch)
            else:
                self.stats.metric_points_sent += len(batch)

        if metric_name == HEART_RATE_METRIC:
            self.hr_points.extend(hr_points)
        self._mark(pending)
        logger.info("Uploaded metric %s: files=%d points=%d", metric_name, len(pending), len(points))

    def upload_workouts(self, workouts_dir: Path, routes_dir: Path):
        batch: List[Dict[str, Any]] = []
        batch_files: List[PendingFile] = []

        for path in sorted(workouts_dir.glob("*.hae")):
            # Only between payloads
            if not batch and self._stopping():
                return
            done, record = self._check(path)
            if done or record is None:
                continue
            try:
                workout = parse_file(FileKind.WORKOUT, self.decoder(path))
                if not workout.id:
                    workout.id = workout_id_from_filename(path.name)
            except (DecodeError, ParseError) as e:
                logger.warning("Skipping %s: %s", path, e)
                self.stats.files_errored += 1
                continue

            route = None
            route_path = routes_dir / f"{workout.id}.hae"
            if route_path.is_file():
                try:
                    route = parse_file(FileKind.ROUTE, self.decoder(route_path))
                except (DecodeError, ParseError) as e:
                    logger.warning("Ignoring route %s: %s", route_path, e)

            converted = convert_workout(workout, route, self.hr_points)
            self.stats.route_points_sent += len(converted.get("route", []))
            self.stats.hr_points_correlated += len(converted.get("heartRateData", []))
            batch.append(converted)
            batch_files.append(record)

            if len(batch) >= WORKOUTS_PER_PAYLOAD:
                self._send_workouts(batch, batch_files)
                batch, batch_files = [], []

        if batch:
            self._send_workouts(batch, batch_files)

    def _send_workouts(self, workouts: List[Dict[str, Any]], files: List[PendingFile]):
        if self.dry_run:
            logger.info("dry-run: would send %d workouts", len(workouts))
        self._send({"data": {"workouts": workouts}})
        self.stats.workouts_sent += len(workouts)
        self._mark(files)

    def upload_strength(self, strength_dir: Path):
        for path in sorted(strength_dir.glob("*.csv")):
            if self._stopping():
                return
            done, record = self._check(path)
            if done or record is None:
                continue
            text = path.read_text(encoding="utf-8-sig")
            if not text.strip():
                self.stats.files_skipped += 1
                if not self.dry_run:
                    self.state.mark_uploaded(record.rel_path, record.size, record.hash)
                continue
            self.stats.bytes_sent += len(text.encode("utf-8"))
            if self.dry_run:
                logger.info("dry-run: would send strength export %s", path.name)
            else:
                self.client.send_strength_csv(text)
            self.stats.sets_files_sent += 1
            self._mark([record])

    # ------------------------------------------------------------------
    # Live mode
    # ------------------------------------------------------------------
    def resume_start(self, start: datetime) -> datetime:
        """Later of ``start`` and the persisted cursor."""
        cursor = self.state.get_cursor(LIVE_CURSOR)
        if not cursor:
            return start
        synced = datetime.combine(
            datetime.strptime(cursor, CURSOR_FORMAT).date(), time.min, tzinfo=timezone.utc
        )
        if synced > start:
            logger.info("Resuming live sync from %s", cursor)
            return synced
        return start

    def run_live(
        self,
        live,
        start: datetime,
        end: datetime,
        chunk_days: int = 7,
        metrics: List[LiveMetric] = LIVE_METRICS,
    ) -> UploadStats:
        """Forward the live source's data chunk by chunk, persisting progress.

        A chunk is complete once every metric and the workouts for its
        range were forwarded; only then does the cursor move to its end
        date. The stop event is honoured between chunks.
        """
        step = timedelta(days=max(chunk_days, 1))
        chunk_start = self.resume_start(start)
        try:
            while chunk_start < end:
                if self.stop_event.is_set():
                    logger.info("Stop requested; live sync paused at %s", chunk_start.strftime(CURSOR_FORMAT))
                    break
                chunk_end = min(chunk_start + step, end)
                self.sync_chunk(live, chunk_start, chunk_end, metrics)
                if not self.dry_run:
                    self.state.set_cursor(LIVE_CURSOR, chunk_end.strftime(CURSOR_FORMAT))
                chunk_start = chunk_end
        except TransportError as e:
            e.stats = self.stats
            raise
        return self.stats

    def sync_chunk(self, live, chunk_start: datetime, chunk_end: datetime, metrics: List[LiveMetric]):
        span = f"{chunk_start.strftime(CURSOR_FORMAT)} -> {chunk_end.strftime(CURSOR_FORMAT)}"
        for metric in metrics:
            result = live.query_metrics_with_retry(chunk_start, chunk_end, metric.name, metric.aggregate)
            if _is_empty(result):
                logger.debug("No %s data for %s", metric.name, span)
                continue
            if self.dry_run:
                logger.info("dry-run: would forward %s for %s", metric.name, span)
            self._send(result)
            self.stats.live_metric_chunks += 1

        result = live.query_workouts_with_retry(chunk_start, chunk_end)
        if _is_empty(result):
            logger.debug("No workouts for %s", span)
            return
        if self.dry_run:
            logger.info("dry-run: would forward workouts for %s", span)
        self._send(result)
        self.stats.live_workout_chunks += 1


def _is_empty(result) -> bool:
    if not result:
        return True
    data = result.get("data") if isinstance(result, dict) else None
    if isinstance(data, dict):
        return not (data.get("metrics") or data.get("workouts"))
    return False
