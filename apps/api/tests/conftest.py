import os
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()
os.environ.setdefault("TRACING_ENABLED", "false")

from campaign_api.app import create_app  # noqa: E402
from campaign_api.db.base import Base  # noqa: E402
from campaign_api.db.session import get_session  # noqa: E402
import campaign_api.models  # noqa: E402,F401
from campaign_api.observability.calendar import get_calendar_store  # noqa: E402
from campaign_api.services.calendar import EventCatalog, RequestContext  # noqa: E402
from campaign_api.services.calendar.catalog import reset_config_cache  # noqa: E402


RAFFLE_ID = "mega_25"


def at_noon(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc)


def member_ctx(user_id, day: date | None = None, *, now: datetime | None = None) -> RequestContext:
    return RequestContext(actor_user_id=user_id, now=now or (at_noon(day) if day else None))


async def seed_raffle(session, raffle_id: str = RAFFLE_ID, *, winners_count: int = 1):
    return await EventCatalog(session).define_raffle(
        raffle_id,
        name="Mega raffle",
        start_at=datetime(2025, 12, 1, tzinfo=timezone.utc),
        end_at=datetime(2025, 12, 26, tzinfo=timezone.utc),
        draw_at=datetime(2025, 12, 26, 12, tzinfo=timezone.utc),
        winners_count=winners_count,
    )


async def seed_event(session, day: date, config: dict | None = None, *, published: bool = True, **kwargs):
    return await EventCatalog(session).define_event(
        day,
        slug=f"day-{day.isoformat()}",
        config=config or {},
        published=published,
        **kwargs,
    )


async def seed_days(session, first: date, count: int, config: dict | None = None) -> None:
    for offset in range(count):
        await seed_event(session, first + timedelta(days=offset), config)


@pytest.fixture(autouse=True)
def _reset_calendar_state():
    reset_config_cache()
    get_calendar_store().reset()
    yield
    reset_config_cache()
    get_calendar_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
