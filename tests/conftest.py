"""Test fixtures with in-memory SQLite via SQLModel."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from swaami.config import settings
from swaami.database import get_db_session
from swaami.db_models import (  # noqa: F401 (registers tables)
    CreditLedger,
    Endorsement,
    Match,
    Message,
    Profile,
    Task,
    VerificationEvent,
)
from swaami.main import app
from swaami.rate_limit import limiter

SERVICE_KEY = "test-service-key"

TIER_1_TYPES = ("email", "phone_sms", "social_google")
TIER_2_TYPES = TIER_1_TYPES + ("photos_complete", "endorsement", "mfa_enabled")


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setattr(settings, "service_key", SERVICE_KEY)
    monkeypatch.setattr(limiter, "enabled", False)


def _factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]


@pytest.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://", echo=False, connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    factory = _factory(engine)

    async def override_get_db_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session

    yield factory

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def file_db(tmp_path):
    """File-backed database, for tests that need truly separate connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'swaami.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.execute(text("PRAGMA journal_mode=WAL"))
        await conn.run_sync(SQLModel.metadata.create_all)

    yield _factory(engine)

    await engine.dispose()


@pytest.fixture
async def client(db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def register_profile(client: AsyncClient, name: str = "Test Neighbour") -> dict:
    """Helper: register a profile, return {"profile_id", "api_key", ...}."""
    resp = await client.post(
        "/v1/register",
        json={"display_name": name},
        headers={"Accept": "application/json"},
    )
    assert resp.status_code == 201
    return resp.json()


def auth_header(api_key: str) -> dict:
    return {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}


def service_header() -> dict:
    return auth_header(SERVICE_KEY)


async def grant(client: AsyncClient, profile_id: str, *types: str) -> dict:
    """Helper: record verifications the way a verification service would."""
    data: dict = {}
    for vtype in types:
        resp = await client.post(
            "/v1/verifications",
            json={"profile_id": profile_id, "verification_type": vtype},
            headers=service_header(),
        )
        assert resp.status_code in (200, 201), resp.text
        data = resp.json()
    return data


async def verified_profile(client: AsyncClient, name: str, types=TIER_2_TYPES) -> dict:
    data = await register_profile(client, name)
    await grant(client, data["profile_id"], *types)
    return {"id": data["profile_id"], "key": data["api_key"]}


async def post_task(
    client: AsyncClient, key: str, title: str = "Carry shopping upstairs", **fields
):
    resp = await client.post(
        "/v1/tasks",
        json={"title": title, **fields},
        headers=auth_header(key),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
async def neighbours(client):
    """An owner (tier 1) with an open task, two tier-2 helpers and an unverified user."""
    owner = await verified_profile(client, "Owner", TIER_1_TYPES)
    helper = await verified_profile(client, "Helper A")
    rival = await verified_profile(client, "Helper B")
    newcomer = await verified_profile(client, "Newcomer", ())
    task = await post_task(client, owner["key"])
    return {
        "client": client,
        "owner": owner,
        "helper": helper,
        "rival": rival,
        "newcomer": newcomer,
        "task": task,
    }


async def claimed(neighbours) -> dict:
    """Helper: the helper claims the task; return the match."""
    c = neighbours["client"]
    resp = await c.post(
        f"/v1/tasks/{neighbours['task']['id']}/claim",
        headers=auth_header(neighbours["helper"]["key"]),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["match"]
