"""End-to-end HTTP tests against a live database."""

import uuid

import pytest

from coachreflect.auth.jwt import create_access_token
from coachreflect.referrals.codes import derive_referral_code


def _bearer(user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, email='coach@example.com')}"}


class TestUserRoutes:
    @pytest.mark.asyncio
    async def test_badge_catalog_is_public(self, api_client):
        response = await api_client.get("/api/v1/badges")
        assert response.status_code == 200
        ids = [b["id"] for b in response.json()["badges"]]
        assert ids[:2] == ["streak_3", "streak_7"]

    @pytest.mark.asyncio
    async def test_first_request_provisions_profile(self, api_client):
        user_id = uuid.uuid4()
        response = await api_client.get("/api/v1/gamification", headers=_bearer(user_id))
        assert response.status_code == 200
        data = response.json()
        assert data["streak"]["current_streak"] == 0
        assert data["earned_count"] == 0
        assert data["new_badges"] == []

    @pytest.mark.asyncio
    async def test_new_badges_reported_once(self, api_client):
        user_id = uuid.uuid4()
        await api_client.get("/api/v1/gamification", headers=_bearer(user_id))
        activity = await api_client.post("/internal/v1/activity", json={"user_id": str(user_id)})
        assert activity.status_code == 200
        evaluated = await api_client.post(
            "/internal/v1/badges/evaluate",
            json={"user_id": str(user_id), "metrics": {"reflections": 1}},
        )
        assert evaluated.json() == {"badges_earned": ["reflections_1"]}

        first = (await api_client.get("/api/v1/gamification", headers=_bearer(user_id))).json()
        second = (await api_client.get("/api/v1/gamification", headers=_bearer(user_id))).json()

        assert first["streak"]["current_streak"] == 1
        assert first["streak"]["active_today"] is True
        assert [b["id"] for b in first["new_badges"]] == ["reflections_1"]
        assert second["new_badges"] == []
        assert second["earned_count"] == 1

    @pytest.mark.asyncio
    async def test_referral_flow(self, api_client):
        referrer = uuid.uuid4()
        referred = uuid.uuid4()

        overview = await api_client.get("/api/v1/referrals", headers=_bearer(referrer))
        assert overview.status_code == 200
        code = overview.json()["referral_code"]
        assert code == derive_referral_code(referrer, "COACH")

        await api_client.get("/api/v1/gamification", headers=_bearer(referred))
        applied = await api_client.post(
            "/api/v1/referrals", json={"referral_code": code.lower()}, headers=_bearer(referred)
        )
        assert applied.status_code == 200
        assert applied.json()["referral"]["status"] == "pending"

        reused = await api_client.post("/api/v1/referrals", json={"referral_code": code}, headers=_bearer(referred))
        assert reused.status_code == 400

        settled = await api_client.post(
            "/internal/v1/referrals/settle", json={"user_id": str(referred), "action": "subscribed"}
        )
        assert settled.json()["status"] == "rewarded"
        assert settled.json()["credited"] is True

        again = await api_client.post(
            "/internal/v1/referrals/settle", json={"user_id": str(referred), "action": "subscribed"}
        )
        assert again.json() == {
            "settled": False,
            "referral_id": None,
            "referrer_id": None,
            "status": None,
            "credited": False,
            "reward_type": None,
            "reward_amount": None,
        }

        stats = (await api_client.get("/api/v1/referrals", headers=_bearer(referrer))).json()["stats"]
        assert stats["rewarded"] == 1
        assert stats["total_rewards"] == 7

    @pytest.mark.asyncio
    async def test_self_referral_is_bad_request(self, api_client):
        user_id = uuid.uuid4()
        code = (await api_client.get("/api/v1/referrals", headers=_bearer(user_id))).json()["referral_code"]
        response = await api_client.post("/api/v1/referrals", json={"referral_code": code}, headers=_bearer(user_id))
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot refer yourself"


class TestInternalRoutes:
    @pytest.mark.asyncio
    async def test_activity_for_unknown_user_is_bad_request(self, api_client):
        response = await api_client.post("/internal/v1/activity", json={"user_id": str(uuid.uuid4())})
        assert response.status_code == 400
        assert "Unknown user" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_special_badge(self, api_client, make_profile):
        user_id = await make_profile()
        body = {"user_id": str(user_id), "badge_id": "early_adopter"}
        first = await api_client.post("/internal/v1/badges/special", json=body)
        second = await api_client.post("/internal/v1/badges/special", json=body)
        assert (first.json()["awarded"], second.json()["awarded"]) == (True, False)

    @pytest.mark.asyncio
    async def test_evaluate_unknown_metric_is_bad_request(self, api_client, make_profile):
        user_id = await make_profile()
        response = await api_client.post(
            "/internal/v1/badges/evaluate", json={"user_id": str(user_id), "metrics": {"sessions": 3}}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_attribute_with_custom_reward(self, api_client, make_profile):
        await make_profile(referral_code="ABC123")
        referred = await make_profile()
        response = await api_client.post(
            "/internal/v1/referrals/attribute",
            json={"referred_id": str(referred), "referral_code": "ABC123", "reward_amount": 30},
        )
        assert response.status_code == 200
        assert response.json()["created"] is True
        assert response.json()["referral"]["reward_amount"] == 30

    @pytest.mark.asyncio
    async def test_at_risk_listing(self, api_client, make_profile):
        response = await api_client.get("/internal/v1/streaks/at-risk")
        assert response.status_code == 200
        assert response.json() == {"users": [], "total": 0}
