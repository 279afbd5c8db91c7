from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from healthlake.config import settings


def async_url(url: str) -> str:
    # Ensure we use the async driver regardless of how the URL is provided
    return url.replace("postgresql://", "postgresql+asyncpg://")


db_url = async_url(settings.DATABASE_URL)

engine = create_async_engine(db_url, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


def get_store():
    """FastAPI dependency returning the store bound to the process engine."""
    from healthlake.storage import HealthStore

    return HealthStore(AsyncSessionLocal, engine.dialect.name)


def create_store(url: str):
    """Engine and store for a database other than the configured one."""
    from healthlake.storage import HealthStore

    other = create_async_engine(async_url(url), echo=False)
    sessions = async_sessionmaker(other, class_=AsyncSession, expire_on_commit=False)
    return other, HealthStore(sessions, other.dialect.name)


async def create_tables(bind=None):
    """Create all tables (dev and tests; production schema comes from Alembic)."""
    import healthlake.models  # noqa: F401  registers the tables on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
