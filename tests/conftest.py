import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()
os.environ.setdefault("OTEL_EXPORTER", "none")

import trendle_api.models  # noqa: E402,F401
from trendle_api.app import create_app  # noqa: E402
from trendle_api.db.base import Base  # noqa: E402
from trendle_api.db.session import get_session  # noqa: E402
from trendle_api.observability.points import get_points_store  # noqa: E402


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    # file-backed so concurrent sessions get their own connection and transaction
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'points.db'}", future=True)
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


@pytest.fixture(autouse=True)
def reset_points_store():
    store = get_points_store()
    store.reset()
    yield
    store.reset()
