import logging
import time
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from healthlake import stats
from healthlake.config import settings
from healthlake.database import create_tables, get_db, get_store
from healthlake.errors import HealthlakeError, ParseError, PersistenceError
from healthlake.push import PushProvider
from healthlake.records import UserContext
from healthlake.schemas import (
    AllowedMetricSchema,
    CorrelationPointSchema,
    CorrelationSchema,
    ImportLogSchema,
    IngestResult,
    MetricStatsSchema,
    PushPayload,
    SleepPeriodSchema,
    TimeSeriesPointSchema,
)
from healthlake.storage import HealthStore
from healthlake.strength import StrengthProvider
from healthlake.timeutil import as_utc

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("healthlake")

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="healthlake")


# ---------------------------------------------------------------------------
# Auth and user dependencies
# ---------------------------------------------------------------------------
async def verify_api_key(x_api_key: str = Header(...)):
    if not settings.API_KEY or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API Key",
        )
    return x_api_key


def get_user() -> UserContext:
    return UserContext(user_id=settings.DEFAULT_USER_ID)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Import log helpers
# ---------------------------------------------------------------------------
async def _finish_import(store: HealthStore, log_id: int, started: float, result: IngestResult):
    await store.update_import_log(
        log_id,
        status="success",
        metrics_received=result.metrics_received,
        metrics_inserted=result.metrics_inserted,
        workouts_received=result.workouts_received,
        workouts_inserted=result.workouts_inserted,
        sleep_sessions=result.sleep_sessions_inserted,
        sets_inserted=result.sets_inserted,
        duration_ms=int((time.monotonic() - started) * 1000),
    )


async def _fail_import(store: HealthStore, log_id: int, started: float, error: Exception):
    try:
        await store.update_import_log(
            log_id,
            status="error",
            error_message=str(error),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
    except PersistenceError as e:
        logger.error("Could not record failed import %d: %s", log_id, e)


# ---------------------------------------------------------------------------
# Push ingest: Health Auto Export REST automations
# ---------------------------------------------------------------------------
@app.post("/v1/ingest/hae", response_model=IngestResult)
async def ingest_hae(
    payload: PushPayload,
    automation_name: Optional[str] = Header(None, alias="automation-name"),
    automation_id: Optional[str] = Header(None, alias="automation-id"),
    automation_aggregation: Optional[str] = Header(None, alias="automation-aggregation"),
    store: HealthStore = Depends(get_store),
    ctx: UserContext = Depends(get_user),
    _: str = Depends(verify_api_key),
):
    metadata = {
        k: v
        for k, v in (
            ("automation_name", automation_name),
            ("automation_id", automation_id),
            ("automation_aggregation", automation_aggregation),
        )
        if v is not None
    }
    started = time.monotonic()
    log_id = None
    try:
        log_id = await store.insert_import_log(ctx.user_id, "hae_rest", metadata=metadata or None)
        result = await PushProvider(store).ingest(payload, ctx)
        await _finish_import(store, log_id, started, result)
    except HealthlakeError as e:
        logger.error("Ingest failed [hae_rest]: %s", e)
        if log_id is not None:
            await _fail_import(store, log_id, started, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database error during ingest",
        )

    logger.info(
        "Ingest OK [hae_rest]: automation=%s metrics=%d/%d workouts=%d/%d rejected=%s",
        automation_name or "-",
        result.metrics_inserted,
        result.metrics_received,
        result.workouts_inserted,
        result.workouts_received,
        result.rejected_metrics,
    )
    return result


# ---------------------------------------------------------------------------
# Strength-training CSV (Alpha Progression export)
# ---------------------------------------------------------------------------
@app.post("/v1/ingest/alpha", response_model=IngestResult)
async def ingest_alpha(
    request: Request,
    store: HealthStore = Depends(get_store),
    ctx: UserContext = Depends(get_user),
    _: str = Depends(verify_api_key),
):
    body = (await request.body()).decode("utf-8-sig", errors="replace")
    if not body.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty CSV body")

    started = time.monotonic()
    log_id = None
    try:
        log_id = await store.insert_import_log(ctx.user_id, "alpha")
        result = await StrengthProvider(store).ingest(body, ctx)
        await _finish_import(store, log_id, started, result)
    except ParseError as e:
        if log_id is not None:
            await _fail_import(store, log_id, started, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid CSV: {e}")
    except HealthlakeError as e:
        logger.error("Ingest failed [alpha]: %s", e)
        if log_id is not None:
            await _fail_import(store, log_id, started, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database error during ingest",
        )
    logger.info("Ingest OK [alpha]: sets=%d", result.sets_inserted)
    return result


# ---------------------------------------------------------------------------
# Allowlist and import history
# ---------------------------------------------------------------------------
@app.get("/v1/allowlist", response_model=List[AllowedMetricSchema])
async def allowlist(
    store: HealthStore = Depends(get_store),
    _: str = Depends(verify_api_key),
):
    return await store.allowed_metrics()


@app.get("/v1/imports", response_model=List[ImportLogSchema])
async def imports(
    limit: int = Query(20, ge=1, le=500),
    store: HealthStore = Depends(get_store),
    ctx: UserContext = Depends(get_user),
    _: str = Depends(verify_api_key),
):
    return await store.query_import_logs(ctx.user_id, limit)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
def _check_bucket(bucket: str) -> str:
    try:
        stats.parse_bucket(bucket)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return bucket


@app.get("/v1/metrics/stats", response_model=MetricStatsSchema)
async def metric_stats(
    metric: str,
    start: datetime,
    end: datetime,
    store: HealthStore = Depends(get_store),
    ctx: UserContext = Depends(get_user),
    _: str = Depends(verify_api_key),
):
    s = await stats.metric_stats(store, metric, as_utc(start), as_utc(end), ctx)
    return MetricStatsSchema(metric=metric, avg=s.avg, min=s.min, max=s.max, stddev=s.stddev, count=s.count)


@app.get("/v1/metrics/timeseries", response_model=List[TimeSeriesPointSchema])
async def metric_timeseries(
    metric: str,
    start: datetime,
    end: datetime,
    bucket: str = "1 day",
    store: HealthStore = Depends(get_store),
    ctx: UserContext = Depends(get_user),
    _: str = Depends(verify_api_key),
):
    points = await stats.time_series(store, metric, as_utc(start), as_utc(end), _check_bucket(bucket), ctx)
    return [TimeSeriesPointSchema(time=p.time, avg=p.avg, min=p.min, max=p.max, count=p.count) for p in points]


@app.get("/v1/correlation", response_model=CorrelationSchema)
async def metric_correlation(
    x: str,
    y: str,
    start: datetime,
    end: datetime,
    bucket: str = "1 day",
    store: HealthStore = Depends(get_store),
    ctx: UserContext = Depends(get_user),
    _: str = Depends(verify_api_key),
):
    result = await stats.correlation(store, x, y, as_utc(start), as_utc(end), _check_bucket(bucket), ctx)
    return CorrelationSchema(
        x_metric=x,
        y_metric=y,
        pearson_r=result.pearson_r,
        count=result.count,
        points=[CorrelationPointSchema(time=p.time, x=p.x, y=p.y) for p in result.points],
    )


@app.get("/v1/sleep/summary", response_model=List[SleepPeriodSchema])
async def sleep_summary(
    start: date,
    end: date,
    bucket: str = "week",
    store: HealthStore = Depends(get_store),
    ctx: UserContext = Depends(get_user),
    _: str = Depends(verify_api_key),
):
    periods = await stats.sleep_summary(store, start, end, bucket, ctx)
    return [SleepPeriodSchema(**vars(p)) for p in periods]


# ---------------------------------------------------------------------------
# Startup: create tables and seed the allowlist (dev only; use Alembic in prod)
# ---------------------------------------------------------------------------
@app.on_event("startup")
async def startup():
    await create_tables()
    seeded = await get_store().seed_allowlist(settings.ALLOWLIST)
    if seeded:
        logger.info("Seeded %d allowlist entries", seeded)
