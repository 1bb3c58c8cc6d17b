"""
Subscription, Access and Auth Endpoint Tests
============================================

End-to-end flows through the HTTP surface:
- Registration and login
- Subscription status (including cache invalidation by webhooks)
- Activity trail
- Content, magazine and route access checks
"""

from datetime import timedelta
import json

from unittest.mock import AsyncMock, patch

from httpx import AsyncClient
import pytest
from sqlalchemy.exc import OperationalError

from app.services.subscription_resolver import SubscriptionResolver
from app.utils.helpers import utc_now

EMAIL = "member@example.com"
PASSWORD = "Sup3rSecret"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _register(client: AsyncClient, email: str = EMAIL) -> dict:
    response = await client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": PASSWORD, "full_name": "Mem Ber"},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _auth(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


async def _send_created(
    client: AsyncClient,
    email: str = EMAIL,
    product: str = "SUCCESS+ Insider",
    subscription_id: str = "pk_sub_flow",
) -> None:
    body = json.dumps({
        "event_type": "subscription_created",
        "data": {
            "subscription_id": subscription_id,
            "customer_id": "pk_cus_flow",
            "customer_email": email,
            "product_name": product,
            "status": "active",
            "current_period_end": int((utc_now() + timedelta(days=30)).timestamp()),
        },
    })
    response = await client.post(
        "/api/v1/webhooks/paykickstart",
        content=body,
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200, response.text


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class TestAuth:

    @pytest.mark.asyncio
    async def test_register_starts_free(self, client):
        data = await _register(client)

        assert data["user"]["email"] == EMAIL
        assert data["subscription"]["has_active_subscription"] is False
        assert data["subscription"]["tier"] == "free"
        assert data["tokens"]["token_type"] == "bearer"

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, client):
        await _register(client)

        response = await client.post(
            "/api/v1/auth/register",
            json={"email": EMAIL.upper(), "password": PASSWORD},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "AUTH_004"

    @pytest.mark.asyncio
    async def test_register_weak_password(self, client):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": EMAIL, "password": "alllowercase"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_login_reports_subscription(self, client):
        await _register(client)
        await _send_created(client)

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": EMAIL, "password": PASSWORD},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["subscription"]["tier"] == "insider"
        assert data["subscription"]["provider"] == "paykickstart"

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, client):
        await _register(client)

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": EMAIL, "password": "Wr0ngPassword"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_001"

    @pytest.mark.asyncio
    async def test_billing_created_account_cannot_log_in(self, client):
        await _send_created(client, email="payer-only@example.com")

        response = await client.post(
            "/api/v1/auth/login",
            json={"email": "payer-only@example.com", "password": PASSWORD},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_me(self, client):
        data = await _register(client)

        response = await client.get("/api/v1/auth/me", headers=_auth(data["tokens"]))

        assert response.status_code == 200
        assert response.json()["data"]["user"]["email"] == EMAIL


# ---------------------------------------------------------------------------
# Subscription status
# ---------------------------------------------------------------------------

class TestSubscriptionStatus:

    @pytest.mark.asyncio
    async def test_anonymous_gets_401_with_free_payload(self, client):
        response = await client.get("/api/v1/subscription/status")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "AUTH_002"
        assert body["data"]["authenticated"] is False
        assert body["data"]["user"] is None
        assert body["data"]["subscription"]["tier"] == "free"
        assert body["data"]["subscription"]["has_active_subscription"] is False

    @pytest.mark.asyncio
    async def test_invalid_token_is_treated_as_anonymous(self, client):
        response = await client.get(
            "/api/v1/subscription/status",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_webhook_invalidates_cached_status(self, client, redis_mock):
        registered = await _register(client)
        tokens = registered["tokens"]
        status_key = f"cache:subscription:status:{registered['user']['user_id']}"

        before = await client.get("/api/v1/subscription/status", headers=_auth(tokens))
        assert before.status_code == 200
        data = before.json()["data"]
        assert data["authenticated"] is True
        assert data["user"]["email"] == EMAIL
        assert data["subscription"]["tier"] == "free"
        assert status_key in [c.args[0] for c in redis_mock.setex.await_args_list]

        await _send_created(client)
        assert status_key in [c.args[0] for c in redis_mock.delete.await_args_list]

        after = await client.get("/api/v1/subscription/status", headers=_auth(tokens))
        subscription = after.json()["data"]["subscription"]
        assert subscription["has_active_subscription"] is True
        assert subscription["tier"] == "insider"
        assert subscription["provider"] == "paykickstart"
        assert subscription["subscription_id"] == "pk_sub_flow"
        assert subscription["current_period_end"] is None

    @pytest.mark.asyncio
    async def test_fallback_status_is_not_cached(self, client, redis_mock):
        registered = await _register(client)
        tokens = registered["tokens"]
        status_key = f"cache:subscription:status:{registered['user']['user_id']}"
        failing = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("connection lost"))
        )

        with patch.object(SubscriptionResolver, "_resolve", failing):
            degraded = await client.get("/api/v1/subscription/status", headers=_auth(tokens))

        assert degraded.status_code == 200
        assert degraded.json()["data"]["subscription"]["tier"] == "free"
        assert status_key not in [c.args[0] for c in redis_mock.setex.await_args_list]

        recovered = await client.get("/api/v1/subscription/status", headers=_auth(tokens))

        assert recovered.status_code == 200
        assert status_key in [c.args[0] for c in redis_mock.setex.await_args_list]

    @pytest.mark.asyncio
    async def test_cancellation_reflected_in_status(self, client):
        tokens = (await _register(client))["tokens"]
        await _send_created(client)
        await client.get("/api/v1/subscription/status", headers=_auth(tokens))

        response = await client.post(
            "/api/v1/webhooks/paykickstart",
            content=json.dumps({
                "event_type": "subscription_cancelled",
                "data": {"subscription_id": "pk_sub_flow", "cancel_at_period_end": False},
            }),
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200

        status = await client.get("/api/v1/subscription/status", headers=_auth(tokens))
        assert status.json()["data"]["subscription"]["has_active_subscription"] is False


# ---------------------------------------------------------------------------
# Activity trail
# ---------------------------------------------------------------------------

class TestActivity:

    @pytest.mark.asyncio
    async def test_lists_transitions(self, client):
        tokens = (await _register(client))["tokens"]
        await _send_created(client)

        response = await client.get("/api/v1/subscription/activity", headers=_auth(tokens))

        assert response.status_code == 200
        entries = response.json()["data"]
        assert len(entries) == 1
        assert entries[0]["action"] == "SUBSCRIPTION_CREATED"
        assert entries[0]["entity"] == "subscription"
        assert entries[0]["details"]["subscription_id"] == "pk_sub_flow"

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.get("/api/v1/subscription/activity")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_002"

    @pytest.mark.asyncio
    async def test_rejects_bad_token(self, client):
        response = await client.get(
            "/api/v1/subscription/activity",
            headers={"Authorization": "Bearer garbage"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_005"


# ---------------------------------------------------------------------------
# Access checks
# ---------------------------------------------------------------------------

class TestAccessEndpoints:

    @pytest.mark.asyncio
    async def test_public_content_for_anonymous(self, client):
        response = await client.post("/api/v1/access/check", json={"is_premium": False})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["allowed"] is True
        assert data["reason"] == "public"

    @pytest.mark.asyncio
    async def test_premium_content_for_anonymous(self, client):
        response = await client.post(
            "/api/v1/access/check",
            json={"is_premium": True, "required_tier": "insider"},
        )

        data = response.json()["data"]
        assert data["allowed"] is False
        assert data["reason"] == "login_required"
        assert data["upgrade_url"] == "/subscribe?tier=insider"

    @pytest.mark.asyncio
    async def test_unknown_required_tier_rejected(self, client):
        response = await client.post(
            "/api/v1/access/check",
            json={"is_premium": True, "required_tier": "platinum"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_paid_member_access(self, client):
        tokens = (await _register(client))["tokens"]
        await _send_created(client, product="SUCCESS+ Collective")

        collective = await client.post(
            "/api/v1/access/check",
            json={"is_premium": True},
            headers=_auth(tokens),
        )
        insider = await client.post(
            "/api/v1/access/check",
            json={"is_premium": True, "required_tier": "insider"},
            headers=_auth(tokens),
        )

        assert collective.json()["data"]["reason"] == "granted"
        assert insider.json()["data"]["reason"] == "tier_required"
        assert insider.json()["data"]["current_tier"] == "collective"

    @pytest.mark.asyncio
    async def test_magazine_for_anonymous(self, client):
        response = await client.get("/api/v1/access/magazine")

        data = response.json()["data"]
        assert data["allowed"] is False
        assert data["required_tier"] == "insider"
        assert data["required_tier_name"] == "SUCCESS+ Insider"
        assert data["upgrade_url"] == "/subscribe?tier=insider"

    @pytest.mark.asyncio
    async def test_magazine_for_insider(self, client):
        tokens = (await _register(client))["tokens"]
        await _send_created(client)

        response = await client.get("/api/v1/access/magazine", headers=_auth(tokens))

        data = response.json()["data"]
        assert data["allowed"] is True
        assert data["upgrade_url"] is None

    @pytest.mark.asyncio
    async def test_premium_route(self, client):
        response = await client.get("/api/v1/access/route", params={"path": "/magazine/2026-10"})

        data = response.json()["data"]
        assert data["path"] == "/magazine/2026-10"
        assert data["is_premium"] is True
        assert data["allowed"] is False
        assert data["reason"] == "login_required"

    @pytest.mark.asyncio
    async def test_public_route(self, client):
        response = await client.get("/api/v1/access/route", params={"path": "/articles/habits"})

        data = response.json()["data"]
        assert data["is_premium"] is False
        assert data["allowed"] is True
        assert data["reason"] == "public"
