"""Ordered import of a Health Auto Export AutoSync tree.

Layout::

    AutoSync/
        HealthMetrics/<metric>/*.hae
        Workouts/*.hae
        Routes/<workout-id>.hae

Phases run metrics -> workouts -> heart_rate. The heart-rate phase reads the
heart_rate samples written by the metric phase, so it refuses to start
before that phase has completed.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, List

from healthlake.correlate import HeartRateCorrelator
from healthlake.decoder import decode_file
from healthlake.errors import (
    DecodeError,
    HealthlakeError,
    ParseError,
    PipelineOrderError,
)
from healthlake.parsers import SLEEP_METRIC, FileKind, parse_file
from healthlake.records import UserContext
from healthlake.sleep import SleepSynthesizer
from healthlake.workouts import WorkoutImporter
from healthlake.writer import MetricWriter

logger = logging.getLogger(__name__)

AUTOSYNC_DIR = "AutoSync"
METRICS_DIR = "HealthMetrics"
WORKOUTS_DIR = "Workouts"
ROUTES_DIR = "Routes"

PHASE_METRICS = "metrics"
PHASE_WORKOUTS = "workouts"
PHASE_HEART_RATE = "heart_rate"


@dataclass
class ImportStats:
    files_processed: int = 0
    files_skipped: int = 0
    files_errored: int = 0

    metrics_inserted: int = 0
    metrics_duplicated: int = 0
    sleep_stages_inserted: int = 0
    sleep_sessions_created: int = 0
    workouts_inserted: int = 0
    workouts_duplicated: int = 0
    route_points_inserted: int = 0
    hr_correlated: int = 0

    rejected_metrics: List[str] = field(default_factory=list)

    def as_dict(self):
        return asdict(self)


def resolve_autosync(path) -> Path:
    """Locate the AutoSync directory given it, its parent, or an export root."""
    path = Path(path).expanduser()
    if not path.is_dir():
        raise FileNotFoundError(f"AutoSync path does not exist or is not a directory: {path}")
    if path.name == AUTOSYNC_DIR:
        return path
    if (path / AUTOSYNC_DIR).is_dir():
        return path / AUTOSYNC_DIR
    if (path / METRICS_DIR).is_dir() or (path / WORKOUTS_DIR).is_dir():
        return path
    for candidate in sorted(path.rglob(AUTOSYNC_DIR)):
        if candidate.is_dir():
            return candidate
    raise FileNotFoundError(f"no {AUTOSYNC_DIR} directory under {path}")


class ImportPipeline:
    def __init__(
        self,
        store,
        decoder: Callable[[Path], bytes] = decode_file,
        dry_run: bool = False,
        synthesizer: SleepSynthesizer = None,
    ):
        self.store = store
        self.decoder = decoder
        self.dry_run = dry_run
        self.writer = MetricWriter(store)
        self.synthesizer = synthesizer or SleepSynthesizer(store)
        self.workouts = WorkoutImporter(store, self.writer, decoder, dry_run)
        self.correlator = HeartRateCorrelator(store, self.writer)
        self.stats = ImportStats()
        self.completed = set()

    async def run(self, autosync_dir, ctx: UserContext) -> ImportStats:
        """Run every phase in order. Phase failures carry the stats so far."""
        root = Path(autosync_dir)
        log_id = None
        started = time.monotonic()
        if not self.dry_run:
            log_id = await self.store.insert_import_log(
                ctx.user_id, "hae_file", metadata={"path": str(root)}
            )
        try:
            await self.import_metrics(root / METRICS_DIR, ctx)
            await self.import_workouts(root / WORKOUTS_DIR, ctx, root / ROUTES_DIR)
            if not self.dry_run:
                await self.correlate_heart_rate(ctx)
        except HealthlakeError as e:
            e.stats = self.stats
            if log_id is not None:
                await self._finish_log(log_id, started, "error", str(e))
            raise
        if log_id is not None:
            await self._finish_log(log_id, started, "success")
        return self.stats

    async def _finish_log(self, log_id: int, started: float, status: str, error: str = None):
        s = self.stats
        await self.store.update_import_log(
            log_id,
            status=status,
            metrics_received=s.metrics_inserted + s.metrics_duplicated,
            metrics_inserted=s.metrics_inserted,
            workouts_received=s.workouts_inserted + s.workouts_duplicated,
            workouts_inserted=s.workouts_inserted,
            sleep_sessions=s.sleep_sessions_created,
            duration_ms=int((time.monotonic() - started) * 1000),
            error_message=error,
        )

    # -----------------------------------------------------------------------
    # Phase 1: health metrics (including heart_rate and sleep stages)
    # -----------------------------------------------------------------------
    async def import_metrics(self, metrics_dir: Path, ctx: UserContext) -> None:
        if metrics_dir.is_dir():
            for metric_dir in sorted(p for p in metrics_dir.iterdir() if p.is_dir()):
                metric_name = metric_dir.name
                if not await self.writer.admit(metric_name):
                    continue
                if metric_name == SLEEP_METRIC:
                    await self._import_sleep_dir(metric_dir, ctx)
                else:
                    await self._import_metric_dir(metric_dir, metric_name, ctx)
        self.stats.rejected_metrics = list(self.writer.rejected)
        self.completed.add(PHASE_METRICS)

    def _load(self, path: Path, metric_name: str, ctx: UserContext):
        """Decode and convert one metric file; None when it is broken."""
        try:
            metric_file = parse_file(FileKind.METRIC, self.decoder(path))
        except (DecodeError, ParseError) as e:
            logger.warning("Skipping %s: %s", path, e)
            self.stats.files_errored += 1
            return None
        return metric_file.to_rows(ctx, metric_name)

    async def _import_metric_dir(self, metric_dir: Path, metric_name: str, ctx: UserContext):
        for path in sorted(metric_dir.glob("*.hae")):
            rows = self._load(path, metric_name, ctx)
            if rows is None:
                continue
            rows = self.writer.canonical_points(metric_name, rows)
            if not rows:
                self.stats.files_skipped += 1
                continue

            self.stats.files_processed += 1
            if self.dry_run:
                self.stats.metrics_inserted += len(rows)
                continue
            written = await self.writer.write_metrics(rows)
            self.stats.metrics_inserted += written.inserted
            self.stats.metrics_duplicated += written.duplicated

    async def _import_sleep_dir(self, metric_dir: Path, ctx: UserContext):
        for path in sorted(metric_dir.glob("*.hae")):
            stages = self._load(path, SLEEP_METRIC, ctx)
            if stages is None:
                continue
            if not stages:
                self.stats.files_skipped += 1
                continue

            self.stats.files_processed += 1
            if self.dry_run:
                self.stats.sleep_stages_inserted += len(stages)
                continue
            written = await self.writer.write_stages(stages)
            self.stats.sleep_stages_inserted += written.inserted

        if not self.dry_run:
            synthesis = await self.synthesizer.synthesize(ctx)
            self.stats.sleep_sessions_created += synthesis.sessions_created

    # -----------------------------------------------------------------------
    # Phase 2: workouts and their routes
    # -----------------------------------------------------------------------
    async def import_workouts(self, workouts_dir: Path, ctx: UserContext, routes_dir: Path = None):
        if workouts_dir.is_dir():
            for path in sorted(workouts_dir.glob("*.hae")):
                try:
                    result = await self.workouts.import_file(path, ctx, routes_dir)
                except (DecodeError, ParseError) as e:
                    logger.warning("Skipping %s: %s", path, e)
                    self.stats.files_errored += 1
                    continue
                self.stats.files_processed += 1
                if result.inserted:
                    self.stats.workouts_inserted += 1
                else:
                    self.stats.workouts_duplicated += 1
                self.stats.route_points_inserted += result.route_points
        self.completed.add(PHASE_WORKOUTS)

    # -----------------------------------------------------------------------
    # Phase 3: heart rate back-fill
    # -----------------------------------------------------------------------
    async def correlate_heart_rate(self, ctx: UserContext) -> int:
        if PHASE_METRICS not in self.completed:
            raise PipelineOrderError(
                "heart rate correlation requires the metric phase to complete first",
                stats=self.stats,
            )
        self.stats.hr_correlated = await self.correlator.correlate(ctx)
        self.completed.add(PHASE_HEART_RATE)
        return self.stats.hr_correlated
