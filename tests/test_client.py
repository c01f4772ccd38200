"""SwaamiClient against the real app and against canned transports."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from swaami.client import ClaimInFlight, NotAuthenticated, SwaamiClient, error_from_response
from swaami.errors import (
    AlreadyMatched,
    AuthorizationError,
    FatalStoreError,
    InvalidTransition,
    TransientStoreError,
)
from swaami.main import app
from swaami.retry import RetryConfig
from tests.conftest import TIER_1_TYPES, TIER_2_TYPES, grant

FAST = RetryConfig(max_attempts=3, initial_delay=0.001, max_delay=0.01)


def app_client(api_key: str | None = None) -> SwaamiClient:
    return SwaamiClient(
        "http://test", api_key, retry=FAST, transport=httpx.ASGITransport(app=app)
    )


@pytest.mark.asyncio
async def test_full_favour_through_client(client):
    async with app_client() as owner, app_client() as helper:
        o = await owner.register("Owner")
        h = await helper.register("Helper")
        await grant(client, o["profile_id"], *TIER_1_TYPES)
        await grant(client, h["profile_id"], *TIER_2_TYPES)

        task = await owner.post_task("Pick up a parcel", category="other")
        browse = await helper.browse_tasks()
        assert [t["id"] for t in browse["tasks"]] == [task["id"]]

        claim = await helper.claim_task(task["id"])
        match_id = claim["match"]["id"]
        await helper.accept_match(match_id)
        await owner.send_message(match_id, "It's at the front desk")
        await helper.mark_arrived(match_id)
        done = await helper.complete_match(match_id)
        assert done["status"] == "completed"

        assert (await owner.get_task(task["id"]))["status"] == "completed"
        messages = await helper.list_messages(match_id)
        assert messages["total"] == 2
        assert (await helper.me())["tasks_completed"] == 1
        assert (await owner.activity())["tasks_completed_today"] == 1


@pytest.mark.asyncio
async def test_errors_come_back_typed(client):
    async with app_client() as owner, app_client() as helper, app_client() as rival:
        o = await owner.register("Owner")
        h = await helper.register("Helper")
        r = await rival.register("Rival")
        await grant(client, o["profile_id"], *TIER_1_TYPES)
        await grant(client, h["profile_id"], *TIER_2_TYPES)

        task = await owner.post_task("Feed the cat")

        with pytest.raises(AuthorizationError) as denied:
            await rival.claim_task(task["id"])
        assert denied.value.required_tier == "tier_2"
        assert "email" in denied.value.missing

        await grant(client, r["profile_id"], *TIER_2_TYPES)
        claim = await helper.claim_task(task["id"])
        with pytest.raises(AlreadyMatched):
            await rival.claim_task(task["id"])

        with pytest.raises(InvalidTransition) as bad:
            await helper.complete_match(claim["match"]["id"])
        assert bad.value.entity == "match"
        assert bad.value.current == "pending"


@pytest.mark.asyncio
async def test_unauthenticated(client):
    async with app_client("sk_bogus") as anon:
        with pytest.raises(NotAuthenticated):
            await anon.me()


@pytest.mark.asyncio
async def test_double_tap_claim_refused():
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_handler(request: httpx.Request) -> httpx.Response:
        started.set()
        await release.wait()
        return httpx.Response(201, json={"match": {"id": "mt_1"}, "task_id": "tk_1"})

    async with SwaamiClient(
        "http://test", "sk_x", retry=FAST, transport=httpx.MockTransport(slow_handler)
    ) as sc:
        first = asyncio.create_task(sc.claim_task("tk_1"))
        await started.wait()
        with pytest.raises(ClaimInFlight):
            await sc.claim_task("tk_1")
        release.set()
        assert (await first)["match"]["id"] == "mt_1"
        # Free again once the first claim settles
        assert "tk_1" not in sc._claims_in_flight


@pytest.mark.asyncio
async def test_claim_retry_finds_earlier_success():
    """The claim reply is lost; the retry notices the match already exists."""
    calls: list[str] = []
    match = {"id": "mt_1", "task_id": "tk_1", "helper_id": "pr_me", "status": "pending"}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(f"{request.method} {request.url.path}")
        if request.url.path == "/v1/tasks/tk_1/claim":
            body = {"error": "try again", "code": "temporarily_unavailable"}
            return httpx.Response(503, json=body)
        if request.url.path == "/v1/me":
            return httpx.Response(200, json={"id": "pr_me"})
        if request.url.path == "/v1/matches":
            return httpx.Response(200, json={"matches": [match], "total": 1})
        return httpx.Response(404, json={"error": "Not found", "code": "not_found"})

    async with SwaamiClient(
        "http://test", "sk_x", retry=FAST, transport=httpx.MockTransport(handler)
    ) as sc:
        result = await sc.claim_task("tk_1")

    assert result["match"]["id"] == "mt_1"
    assert calls.count("POST /v1/tasks/tk_1/claim") == 1


@pytest.mark.asyncio
async def test_network_errors_retried_then_raised():
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    async with SwaamiClient(
        "http://test", "sk_x", retry=FAST, transport=httpx.MockTransport(handler)
    ) as sc:
        with pytest.raises(TransientStoreError):
            await sc.get_task("tk_1")
    assert attempts["n"] == 3


def test_error_mapping_fallbacks():
    request = httpx.Request("GET", "http://test/v1/x")
    resp = httpx.Response(500, json={"error": "boom", "reference": "err_abc"}, request=request)
    err = error_from_response(resp)
    assert isinstance(err, FatalStoreError)
    assert err.reference == "err_abc"

    resp = httpx.Response(429, text="slow down", request=request)
    assert isinstance(error_from_response(resp), TransientStoreError)
