"""Claiming a task: the gate, the single winner and retry reconciliation."""

from __future__ import annotations

import asyncio

import pytest
from sqlmodel import select

from swaami.db_models import Match, Profile, Task, TrustTier
from swaami.errors import AlreadyMatched, AuthorizationError, TransientStoreError
from swaami.retry import RetryConfig
from swaami.services.claims import ClaimCoordinator, claim_task
from tests.conftest import TIER_1_TYPES, auth_header, claimed, grant

FAST = RetryConfig(max_attempts=5, initial_delay=0.01, max_delay=0.05)


@pytest.mark.asyncio
async def test_claim_creates_pending_match(neighbours):
    c = neighbours["client"]
    task = neighbours["task"]
    helper = neighbours["helper"]

    resp = await c.post(f"/v1/tasks/{task['id']}/claim", headers=auth_header(helper["key"]))
    assert resp.status_code == 201
    data = resp.json()
    assert data["task_status"] == "matched"
    assert data["match"]["status"] == "pending"
    assert data["match"]["helper_id"] == helper["id"]

    resp = await c.get(f"/v1/tasks/{task['id']}", headers=auth_header(helper["key"]))
    assert resp.json()["status"] == "matched"
    assert resp.json()["helper_id"] == helper["id"]


@pytest.mark.asyncio
async def test_claim_sends_greeting(neighbours):
    match = await claimed(neighbours)
    c = neighbours["client"]
    resp = await c.get(
        f"/v1/matches/{match['id']}/messages", headers=auth_header(neighbours["owner"]["key"])
    )
    messages = resp.json()["messages"]
    assert len(messages) == 1
    assert messages[0]["sender_id"] == neighbours["helper"]["id"]
    assert "Carry shopping upstairs" in messages[0]["content"]


@pytest.mark.asyncio
async def test_second_claim_gets_conflict(neighbours):
    await claimed(neighbours)
    c = neighbours["client"]
    resp = await c.post(
        f"/v1/tasks/{neighbours['task']['id']}/claim",
        headers=auth_header(neighbours["rival"]["key"]),
    )
    assert resp.status_code == 409
    body = resp.json()
    assert body["code"] == "already_matched"
    assert body["outcome"] == "unavailable"
    assert body["error"] == "This task is no longer available"


@pytest.mark.asyncio
async def test_unverified_claim_denied_before_any_write(neighbours, db):
    c = neighbours["client"]
    resp = await c.post(
        f"/v1/tasks/{neighbours['task']['id']}/claim",
        headers=auth_header(neighbours["newcomer"]["key"]),
    )
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == "verification_required"
    assert body["required_tier"] == "tier_2"
    assert "email" in body["missing"]

    async with db() as session:
        matches = (await session.execute(select(Match))).scalars().all()
        task = await session.get(Task, neighbours["task"]["id"])
    assert matches == []
    assert task.status == "open"
    assert task.helper_id is None


@pytest.mark.asyncio
async def test_tier_1_cannot_claim(neighbours):
    c = neighbours["client"]
    other_owner_task = neighbours["task"]["id"]
    resp = await c.post(
        "/v1/register", json={"display_name": "Sam"}, headers={"Accept": "application/json"}
    )
    key = resp.json()["api_key"]
    await grant(c, resp.json()["profile_id"], *TIER_1_TYPES)
    resp = await c.post(f"/v1/tasks/{other_owner_task}/claim", headers=auth_header(key))
    assert resp.status_code == 403
    assert resp.json()["missing"] == ["photos_complete", "endorsement", "mfa_enabled"]


@pytest.mark.asyncio
async def test_owner_cannot_claim_own_task(neighbours, db):
    async with db() as session:
        owner = await session.get(Profile, neighbours["owner"]["id"])
        owner.trust_tier = TrustTier.tier_2.value
        await session.commit()

    c = neighbours["client"]
    resp = await c.post(
        f"/v1/tasks/{neighbours['task']['id']}/claim",
        headers=auth_header(neighbours["owner"]["key"]),
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "own_task"


@pytest.mark.asyncio
async def test_claim_missing_task(neighbours):
    c = neighbours["client"]
    resp = await c.post("/v1/tasks/tk_nope/claim", headers=auth_header(neighbours["helper"]["key"]))
    assert resp.status_code == 409
    assert resp.json()["code"] == "task_not_found"


@pytest.mark.asyncio
async def test_cancelled_task_is_unavailable(neighbours):
    c = neighbours["client"]
    tid = neighbours["task"]["id"]
    await c.post(f"/v1/tasks/{tid}/cancel", headers=auth_header(neighbours["owner"]["key"]))
    resp = await c.post(f"/v1/tasks/{tid}/claim", headers=auth_header(neighbours["helper"]["key"]))
    assert resp.status_code == 409
    assert resp.json()["code"] == "task_unavailable"


@pytest.mark.asyncio
async def test_concurrent_claims_single_winner(neighbours, db, file_db):
    """Two helpers race on separate connections; exactly one match survives."""
    # Copy the fixture rows into a file database so each claim gets its own connection.
    async with db() as src, file_db() as dst:
        for model in (Profile, Task):
            for row in (await src.execute(select(model))).scalars().all():
                dst.add(model(**row.model_dump()))
        await dst.commit()

    tid = neighbours["task"]["id"]
    contenders = [neighbours["helper"]["id"], neighbours["rival"]["id"]]

    async def attempt(helper_id: str):
        async with file_db() as session:
            helper = await session.get(Profile, helper_id)
            try:
                return await ClaimCoordinator(session, config=FAST).claim(tid, helper)
            except AlreadyMatched as exc:
                return exc

    results = await asyncio.gather(*(attempt(h) for h in contenders))
    wins = [r for r in results if isinstance(r, dict)]
    losses = [r for r in results if isinstance(r, AlreadyMatched)]
    assert len(wins) == 1
    assert len(losses) == 1

    async with file_db() as session:
        matches = (await session.execute(select(Match).where(Match.task_id == tid))).scalars().all()
        task = await session.get(Task, tid)
    assert len(matches) == 1
    assert task.status == "matched"
    assert task.helper_id == wins[0]["match"]["helper_id"] == matches[0].helper_id


@pytest.mark.asyncio
async def test_retry_after_lost_reply_returns_existing_match(neighbours, db):
    """The first attempt commits but its caller sees a timeout; the retry must not duplicate."""
    calls = {"n": 0}

    async def commit_then_time_out(session, tid, helper_id):
        calls["n"] += 1
        if calls["n"] == 1:
            await claim_task(session, tid, helper_id)
            raise TransientStoreError("store call timed out")
        return await claim_task(session, tid, helper_id)

    tid = neighbours["task"]["id"]
    async with db() as session:
        helper = await session.get(Profile, neighbours["helper"]["id"])
        coordinator = ClaimCoordinator(session, config=FAST, procedure=commit_then_time_out)
        result = await coordinator.claim(tid, helper)

    assert calls["n"] == 1
    async with db() as session:
        matches = (await session.execute(select(Match).where(Match.task_id == tid))).scalars().all()
    assert len(matches) == 1
    assert result["match"]["id"] == matches[0].id


@pytest.mark.asyncio
async def test_lost_race_is_not_retried(neighbours, db):
    await claimed(neighbours)
    calls = {"n": 0}

    async def counting(session, tid, helper_id):
        calls["n"] += 1
        return await claim_task(session, tid, helper_id)

    async with db() as session:
        rival = await session.get(Profile, neighbours["rival"]["id"])
        with pytest.raises(AlreadyMatched):
            await ClaimCoordinator(session, config=FAST, procedure=counting).claim(
                neighbours["task"]["id"], rival
            )
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_gate_checked_before_coordinator_runs(neighbours, db):
    calls = {"n": 0}

    async def never(session, tid, helper_id):
        calls["n"] += 1
        raise AssertionError("procedure must not run")

    async with db() as session:
        newcomer = await session.get(Profile, neighbours["newcomer"]["id"])
        with pytest.raises(AuthorizationError):
            coordinator = ClaimCoordinator(session, procedure=never)
            await coordinator.claim(neighbours["task"]["id"], newcomer)
    assert calls["n"] == 0
