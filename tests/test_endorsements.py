"""Endorsement links between neighbours."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from swaami.config import settings
from swaami.db_models import Endorsement
from tests.conftest import TIER_1_TYPES, auth_header, grant, verified_profile


async def _create(client, key: str):
    return await client.post("/v1/endorsements", headers=auth_header(key))


async def _accept(client, token: str, key: str):
    return await client.post(f"/v1/endorsements/{token}/accept", headers=auth_header(key))


@pytest.mark.asyncio
async def test_unverified_cannot_vouch(client):
    newcomer = await verified_profile(client, "Newcomer", ())
    resp = await _create(client, newcomer["key"])
    assert resp.status_code == 403
    assert resp.json()["code"] == "verification_required"


@pytest.mark.asyncio
async def test_endorsement_records_verification(client):
    endorser = await verified_profile(client, "Asha", TIER_1_TYPES)
    friend = await verified_profile(client, "Dev", ())

    resp = await _create(client, endorser["key"])
    assert resp.status_code == 201
    link = resp.json()
    assert link["url"].endswith(link["token"])

    resp = await _accept(client, link["token"], friend["key"])
    assert resp.status_code == 200
    assert resp.json()["endorser_id"] == endorser["id"]
    assert resp.json()["trust_tier"] == "tier_0"

    trust = (await client.get("/v1/me/trust", headers=auth_header(friend["key"]))).json()
    assert trust["verifications"] == ["endorsement"]
    assert "endorsement" not in trust["missing_for_tier_2"]


@pytest.mark.asyncio
async def test_endorsement_can_complete_tier_2(client):
    endorser = await verified_profile(client, "Asha", TIER_1_TYPES)
    friend = await verified_profile(client, "Dev", ())
    await grant(client, friend["id"], *TIER_1_TYPES, "photos_complete", "mfa_enabled")

    link = (await _create(client, endorser["key"])).json()
    resp = await _accept(client, link["token"], friend["key"])
    assert resp.json()["trust_tier"] == "tier_2"

    me = (await client.get("/v1/me", headers=auth_header(friend["key"]))).json()
    assert me["trust_tier"] == "tier_2"


@pytest.mark.asyncio
async def test_cannot_endorse_yourself(client):
    endorser = await verified_profile(client, "Asha", TIER_1_TYPES)
    link = (await _create(client, endorser["key"])).json()
    resp = await _accept(client, link["token"], endorser["key"])
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_link_is_single_use(client):
    endorser = await verified_profile(client, "Asha", TIER_1_TYPES)
    first = await verified_profile(client, "Dev", ())
    second = await verified_profile(client, "Mira", ())

    link = (await _create(client, endorser["key"])).json()
    assert (await _accept(client, link["token"], first["key"])).status_code == 200
    resp = await _accept(client, link["token"], second["key"])
    assert resp.status_code == 409
    assert resp.json()["code"] == "state_conflict"


@pytest.mark.asyncio
async def test_expired_link_rejected(client, db):
    endorser = await verified_profile(client, "Asha", TIER_1_TYPES)
    friend = await verified_profile(client, "Dev", ())
    link = (await _create(client, endorser["key"])).json()

    async with db() as session:
        endorsement = await session.get(Endorsement, link["endorsement_id"])
        endorsement.expires_at = datetime.now(UTC) - timedelta(minutes=1)
        await session.commit()

    resp = await _accept(client, link["token"], friend["key"])
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_unknown_token(client):
    friend = await verified_profile(client, "Dev", ())
    resp = await _accept(client, "nope", friend["key"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_endorsement_budget(client, monkeypatch):
    monkeypatch.setattr(settings, "max_endorsements_given", 1)
    endorser = await verified_profile(client, "Asha", TIER_1_TYPES)
    friend = await verified_profile(client, "Dev", ())

    pending = (await _create(client, endorser["key"])).json()
    assert (await _accept(client, pending["token"], friend["key"])).status_code == 200

    resp = await _create(client, endorser["key"])
    assert resp.status_code == 409
