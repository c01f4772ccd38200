"""Posting and browsing tasks."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

import swaami.api.tasks as tasks_api
from swaami.safety import check_content, sanitize_text
from tests.conftest import TIER_1_TYPES, auth_header, claimed, post_task, verified_profile

# Two points in Pune roughly 1.2 km apart
KOTHRUD = (18.5074, 73.8077)
KARVE_NAGAR = (18.4990, 73.8150)


@pytest.mark.asyncio
async def test_tier_0_cannot_post(client):
    newcomer = await verified_profile(client, "Newcomer", ())
    resp = await client.post(
        "/v1/tasks", json={"title": "Walk my dog"}, headers=auth_header(newcomer["key"])
    )
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == "verification_required"
    assert body["missing"] == list(TIER_1_TYPES)


@pytest.mark.asyncio
async def test_post_and_fetch(client):
    owner = await verified_profile(client, "Owner", TIER_1_TYPES)
    task = await post_task(
        client,
        owner["key"],
        "Set up my new phone",
        category="tech",
        urgency="urgent",
        people_needed=1,
    )
    assert task["status"] == "open"
    assert task["helper_id"] is None
    assert task["owner_id"] == owner["id"]
    assert task["caution"] is False

    resp = await client.get(f"/v1/tasks/{task['id']}", headers=auth_header(owner["key"]))
    assert resp.json()["title"] == "Set up my new phone"

    resp = await client.get("/v1/tasks/tk_missing", headers=auth_header(owner["key"]))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_blocked_content_rejected(client):
    owner = await verified_profile(client, "Owner", TIER_1_TYPES)
    resp = await client.post(
        "/v1/tasks",
        json={"title": "Need pills delivered", "description": "no questions asked"},
        headers=auth_header(owner["key"]),
    )
    assert resp.status_code == 400
    assert "prohibited" in resp.json()["error"]


@pytest.mark.asyncio
async def test_caution_flag(client):
    owner = await verified_profile(client, "Owner", TIER_1_TYPES)
    task = await post_task(
        client, owner["key"], "Lockout help", description="Spare key at a friend's"
    )
    assert task["caution"] is True
    task = await post_task(
        client, owner["key"], "Sit with my kid for an hour", category="childcare"
    )
    assert task["caution"] is True


@pytest.mark.asyncio
async def test_browse_excludes_own_and_closed(neighbours):
    c = neighbours["client"]
    owner, helper = neighbours["owner"], neighbours["helper"]
    second = await post_task(c, owner["key"], "Water the plants")

    resp = await c.get("/v1/tasks", headers=auth_header(owner["key"]))
    assert resp.json()["total"] == 0

    await c.post(f"/v1/tasks/{second['id']}/cancel", headers=auth_header(owner["key"]))
    resp = await c.get("/v1/tasks", headers=auth_header(helper["key"]))
    assert [t["id"] for t in resp.json()["tasks"]] == [neighbours["task"]["id"]]


@pytest.mark.asyncio
async def test_browse_open_to_tier_0(neighbours):
    c = neighbours["client"]
    resp = await c.get("/v1/tasks", headers=auth_header(neighbours["newcomer"]["key"]))
    assert resp.status_code == 200
    assert resp.json()["total"] == 1


@pytest.mark.asyncio
async def test_browse_by_category(neighbours):
    c = neighbours["client"]
    await post_task(c, neighbours["owner"]["key"], "Fix a leaking tap", category="handyman")
    helper_key = neighbours["helper"]["key"]
    resp = await c.get("/v1/tasks?category=handyman", headers=auth_header(helper_key))
    assert [t["title"] for t in resp.json()["tasks"]] == ["Fix a leaking tap"]


@pytest.mark.asyncio
async def test_browse_by_radius(client):
    owner = await verified_profile(client, "Owner", TIER_1_TYPES)
    helper = await verified_profile(client, "Helper", ())
    near = await post_task(
        client, owner["key"], "Near task", location_lat=KOTHRUD[0], location_lng=KOTHRUD[1]
    )
    far = await post_task(
        client, owner["key"], "Far task", location_lat=KARVE_NAGAR[0], location_lng=KARVE_NAGAR[1]
    )
    nowhere = await post_task(client, owner["key"], "Anywhere task")

    query = f"/v1/tasks?lat={KOTHRUD[0]}&lng={KOTHRUD[1]}&radius=500"
    resp = await client.get(query, headers=auth_header(helper["key"]))
    ids = {t["id"] for t in resp.json()["tasks"]}
    assert ids == {near["id"], nowhere["id"]}
    assert far["id"] not in ids

    rows = {t["id"]: t for t in resp.json()["tasks"]}
    assert rows[near["id"]]["distance_m"] == 0
    assert rows[near["id"]]["walk_time"] == "Nearby"

    resp = await client.get(
        f"/v1/tasks?lat={KOTHRUD[0]}&lng={KOTHRUD[1]}&radius=2000",
        headers=auth_header(helper["key"]),
    )
    far_row = next(t for t in resp.json()["tasks"] if t["id"] == far["id"])
    assert 1000 < far_row["distance_m"] < 1500
    assert far_row["walk_time"].endswith("min walk")


@pytest.mark.asyncio
async def test_task_defaults_to_owner_location(client):
    owner = await verified_profile(client, "Owner", TIER_1_TYPES)
    await client.patch(
        "/v1/me",
        json={"location_lat": KOTHRUD[0], "location_lng": KOTHRUD[1]},
        headers=auth_header(owner["key"]),
    )
    task = await post_task(client, owner["key"], "Borrow a ladder")
    assert (task["location_lat"], task["location_lng"]) == KOTHRUD


@pytest.mark.asyncio
async def test_my_tasks_covers_owned_and_helping(neighbours):
    await claimed(neighbours)
    c = neighbours["client"]
    for who in ("owner", "helper"):
        resp = await c.get("/v1/tasks/mine", headers=auth_header(neighbours[who]["key"]))
        assert [t["id"] for t in resp.json()["tasks"]] == [neighbours["task"]["id"]]


@pytest.mark.asyncio
async def test_locked_store_reported_as_retryable(client, monkeypatch):
    owner = await verified_profile(client, "Owner", TIER_1_TYPES)

    real_commit = AsyncSession.commit

    async def locked(self):
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(AsyncSession, "commit", locked)
    resp = await client.post(
        "/v1/tasks", json={"title": "Walk my dog"}, headers=auth_header(owner["key"])
    )
    assert resp.status_code == 503
    body = resp.json()
    assert body["code"] == "temporarily_unavailable"
    assert body["retryable"] is True
    assert resp.headers["Retry-After"] == "1"

    monkeypatch.setattr(AsyncSession, "commit", real_commit)
    resp = await client.get("/v1/tasks/mine", headers=auth_header(owner["key"]))
    assert resp.json()["total"] == 0


@pytest.mark.asyncio
async def test_unexpected_store_error_is_opaque(client, monkeypatch):
    viewer = await verified_profile(client, "Viewer", ())

    async def broken(*args, **kwargs):
        raise IntegrityError(
            "SELECT tasks.id FROM tasks", {}, Exception("no such column: tasks.secret")
        )

    monkeypatch.setattr(tasks_api, "list_open_tasks", broken)
    resp = await client.get("/v1/tasks", headers=auth_header(viewer["key"]))
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "internal_error"
    assert body["reference"].startswith("err_")
    assert "tasks" not in body["error"]


def test_sanitize_text():
    assert sanitize_text("  <b>hi</b>\x00 ") == "bhi/b"
    assert sanitize_text("javascript:alert(1)") == "alert(1)"
    assert sanitize_text('img onerror="x"') == 'img "x"'


def test_check_content():
    assert check_content("buy a gun").blocked
    assert not check_content("carry groceries").blocked
    caution = check_content("pay cash on delivery")
    assert caution.caution and not caution.blocked
    assert caution.flags == ["requires_caution"]
