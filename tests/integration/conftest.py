"""Integration test fixtures: real Postgres via testcontainers.

Requires Docker to be running.
Run with: pytest tests/integration -v
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from integrations.domain.orm import Base


@pytest.fixture(scope="session")
def pg_container():
    """Session-scoped PostgreSQL container."""
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16-alpine") as pg:
        yield pg


@pytest.fixture(scope="session")
def pg_url(pg_container):
    """Async connection URL for the testcontainers Postgres instance."""
    # testcontainers gives us a psycopg2 URL; convert to asyncpg
    url = pg_container.get_connection_url()
    return url.replace("psycopg2", "asyncpg")


@pytest.fixture
async def async_engine(pg_url):
    """Fresh schema per test; repositories commit, so there is nothing to roll back."""
    engine = create_async_engine(pg_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncSession:
    session_factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def api_client(async_engine, fitbit_responses):
    """httpx client over the ASGI app, real Postgres, mocked Fitbit endpoints."""
    import httpx

    from integrations.api import get_gateway, get_oauth_client, get_scheduler, get_sync_guard
    from integrations.domain.models import Provider
    from integrations.repository import DomainRecordRepository, IntegrationRepository
    from integrations.scheduler import AutoSyncScheduler
    from integrations.sync import SyncGuard, SyncOrchestrator
    from main import app
    from shared.database import get_session
    from tests.fakes import fitbit_api, make_gateway, make_oauth, token_endpoint, token_payload

    session_factory = async_sessionmaker(async_engine, expire_on_commit=False)

    async def override_session():
        async with session_factory() as session:
            yield session

    guard = SyncGuard()

    async def runner(user_id, trigger):
        async with session_factory() as session:
            orchestrator = SyncOrchestrator(
                integrations=IntegrationRepository(session),
                records=DomainRecordRepository(session),
                gateway=make_gateway(fitbit_api(fitbit_responses)),
                oauth=make_oauth(),
                guard=guard,
            )
            return await orchestrator.sync(user_id, trigger=trigger)

    async def lookup(user_id):
        async with session_factory() as session:
            return await IntegrationRepository(session).get(user_id, Provider.FITBIT)

    auto_sync = AutoSyncScheduler(runner, lookup)
    app.dependency_overrides.update(
        {
            get_session: override_session,
            get_oauth_client: lambda: make_oauth(token_endpoint(token_payload())),
            get_gateway: lambda: make_gateway(fitbit_api(fitbit_responses)),
            get_scheduler: lambda: auto_sync,
            get_sync_guard: lambda: guard,
        }
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    await auto_sync.stop_all()
    app.dependency_overrides.clear()
