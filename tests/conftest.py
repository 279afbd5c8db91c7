import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from healthlake.config import DEFAULT_ALLOWLIST
from healthlake.database import create_tables
from healthlake.records import UserContext
from healthlake.storage import HealthStore

APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

WORKOUT_ID = "0A1B2C3D-4E5F-4A6B-8C7D-9E0F1A2B3C4D"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def apple(dt: datetime) -> float:
    """Seconds since 2001-01-01 UTC, as stored in .hae files."""
    return (dt - APPLE_EPOCH).total_seconds()


def write_hae(path: Path, doc) -> Path:
    """Write an uncompressed stand-in for a .hae archive."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(json.dumps(doc).encode("utf-8"))
    return path


def json_decoder(path) -> bytes:
    return Path(path).read_bytes()


def metric_doc(name, points):
    return {"metric": name, "data": points}


def qty_point(dt, qty, unit="count", source="Apple Watch"):
    return {"start": apple(dt), "end": apple(dt), "unit": unit, "qty": qty, "sources": [{"name": source}]}


def hr_point(dt, avg, lo=None, hi=None, source="Apple Watch"):
    return {
        "start": apple(dt),
        "end": apple(dt),
        "unit": "count/min",
        "min": lo if lo is not None else avg,
        "avg": avg,
        "max": hi if hi is not None else avg,
        "sources": [{"name": source}],
    }


def stage_point(start, end, field, value=None):
    """One unaggregated sleep segment; ``value`` defaults to the span in hours."""
    hours = (end - start).total_seconds() / 3600.0
    return {
        "start": apple(start),
        "end": apple(end),
        field: hours if value is None else value,
        "sources": [{"name": "Apple Watch"}],
    }


def workout_doc(start, end, ident=WORKOUT_ID, name="Outdoor Run"):
    return {
        "id": ident,
        "name": name,
        "start": apple(start),
        "end": apple(end),
        "duration": (end - start).total_seconds(),
        "activeEnergy": 412.5,
        "totalDistance": 5.2,
        "elevationUp": 31.0,
        "location": "Outdoor",
    }


def route_doc(times, ident=WORKOUT_ID):
    return {
        "id": ident,
        "locations": [
            {
                "latitude": 52.52 + i * 0.0001,
                "longitude": 13.40 + i * 0.0001,
                "elevation": 34.0,
                "speed": 2.9,
                "course": 90.0,
                "time": apple(t),
                "hAcc": 4.0,
                "vAcc": 3.0,
            }
            for i, t in enumerate(times)
        ],
    }


@pytest.fixture
def ctx():
    return UserContext(user_id=1)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'healthlake.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(engine):
    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    store = HealthStore(sessions, "sqlite")
    await store.seed_allowlist(DEFAULT_ALLOWLIST)
    return store
