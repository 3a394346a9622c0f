"""
HTTP API tests for the nutrition coach.

The lifespan is not run: services are placed on app.state directly, backed by
the in-memory store and a scripted provider.
"""

import base64
from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient

from coach.api_exceptions import ProviderHTTPError
from coach.config import ConfigResolver
from coach.gateway import AI_UNAVAILABLE_MESSAGE, AIGateway
from coach.rate_limiter import RateLimiter
from coach.service import NutritionCoach
from main import app, build_health_checks

from conftest import FakeProvider, configured_resolver, make_settings


HEADERS = {"X-User-Id": "user-1"}


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
async def services(store, cache, provider):
    resolver = configured_resolver(store, provider)
    gateway = AIGateway(resolver, cooldown=0.0)
    app.state.store = store
    app.state.cache = cache
    app.state.resolver = resolver
    app.state.gateway = gateway
    app.state.coach = NutritionCoach(store, gateway, cache)
    app.state.health = build_health_checks(store, cache, resolver)
    app.state.rate_limiter = RateLimiter()
    yield app.state
    await gateway.aclose()


@pytest.fixture
async def client(services):
    """Async HTTP client for testing."""
    async with AsyncClient(transport=ASGITransport(app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def context_payload():
    return {
        "current_nutrition": {"totalCalories": 1200, "totalProtein": 80, "totalCarbs": 140, "totalFat": 40},
        "nutrition_goals": {"daily_calories_target": 2000, "daily_protein_target": 150},
        "user_profile": {"goal": "maintenance", "weight": 70},
        "water_intake": 1500,
        "meals_logged_today": 2,
    }


# ============================================================================
# HEALTH + AUTH
# ============================================================================

@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"]["supabase"]["healthy"] is True
    assert data["services"]["ai_provider"]["details"]["provider"] == "gemini"
    assert "redis" in data["services"]


@pytest.mark.asyncio
async def test_health_check_degraded_without_ai(client, services, store):
    services.health = build_health_checks(store, services.cache, ConfigResolver(store, make_settings()))
    data = (await client.get("/health")).json()
    assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_health_check_unhealthy_without_store(client, store):
    store.fail("ping")
    data = (await client.get("/health")).json()
    assert data["status"] == "unhealthy"
    assert data["services"]["supabase"]["healthy"] is False


@pytest.mark.asyncio
async def test_missing_user_header(client, context_payload):
    response = await client.post("/api/recommendations", json=context_payload)
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "AUTH_FAILED"


# ============================================================================
# RECOMMENDATIONS
# ============================================================================

@pytest.mark.asyncio
async def test_create_recommendation(client, provider, store, context_payload):
    provider.replies = ["RECOMMENDATION: Add eggs to dinner.\nTYPE: meal_suggestion\nCONFIDENCE: 0.7"]

    response = await client.post("/api/recommendations", json=context_payload, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["recommendation"]["recommendation_text"] == "Add eggs to dinner."
    assert store.recommendations[0]["user_id"] == "user-1"


@pytest.mark.asyncio
async def test_create_recommendation_rate_limited_upstream(client, provider, context_payload):
    provider.replies = [ProviderHTTPError("fake", 429, "quota")]

    response = await client.post("/api/recommendations", json=context_payload, headers=HEADERS)

    assert response.status_code == 429
    assert response.json() == {"success": False, "recommendation": None, "error_kind": "rate_limited"}
    assert "retry-after" in response.headers


@pytest.mark.asyncio
async def test_create_recommendation_unconfigured(client, services, store, cache, context_payload):
    gateway = AIGateway(ConfigResolver(store, make_settings()), cooldown=0.0)
    services.coach = NutritionCoach(store, gateway, cache)

    response = await client.post("/api/recommendations", json=context_payload, headers=HEADERS)

    assert response.status_code == 503
    assert response.json()["error_kind"] == "unconfigured"


@pytest.mark.asyncio
async def test_invalid_context_is_rejected(client):
    response = await client.post("/api/recommendations", json={"water_intake": -5}, headers=HEADERS)
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "VALIDATION_ERROR"
    assert any("water_intake" in err["field"] for err in body["details"]["errors"])


@pytest.mark.asyncio
async def test_todays_recommendation(client, store):
    rec = await store.insert_recommendation({"user_id": "user-1", "recommendation_text": "Stretch"})
    response = await client.get("/api/recommendations/today", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["recommendation"]["id"] == rec["id"]


@pytest.mark.asyncio
async def test_todays_recommendation_empty(client):
    response = await client.get("/api/recommendations/today", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["recommendation"] is None


@pytest.mark.asyncio
async def test_feedback(client, store):
    rec = await store.insert_recommendation({"user_id": "user-1", "recommendation_text": "Stretch"})
    response = await client.post(
        f"/api/recommendations/{rec['id']}/feedback",
        json={"rating": 5, "feedback": "Helped", "was_followed": True},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert store.recommendations[0]["effectiveness_rating"] == 5


@pytest.mark.asyncio
async def test_feedback_rating_out_of_range(client):
    response = await client.post("/api/recommendations/rec-1/feedback", json={"rating": 9}, headers=HEADERS)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_feedback_unknown_recommendation(client):
    response = await client.post("/api/recommendations/missing/feedback", json={"rating": 3}, headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


# ============================================================================
# BEHAVIOR
# ============================================================================

@pytest.mark.asyncio
async def test_track_behavior(client, store):
    response = await client.post(
        "/api/behavior",
        json={"nutrition": {"totalCalories": 1800, "totalProtein": 120}, "water_intake": 2000, "meals_logged": 3},
        headers=HEADERS,
    )
    assert response.status_code == 200
    row = store.behavior_rows[("user-1", date.today().isoformat())]
    assert row["total_calories"] == 1800
    assert row["meals_logged"] == 3


@pytest.mark.asyncio
async def test_track_behavior_storage_down(client, store):
    store.fail("upsert_behavior")
    response = await client.post("/api/behavior", json={"nutrition": {}}, headers=HEADERS)
    assert response.status_code == 503
    assert response.json()["error_code"] == "SERVICE_UNAVAILABLE"


# ============================================================================
# CHAT
# ============================================================================

@pytest.mark.asyncio
async def test_chat(client, provider):
    provider.replies = ["Aim for 30 g of protein at dinner."]
    response = await client.post(
        "/api/chat",
        json={
            "message": "What should I eat tonight?",
            "history": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "Hello!"}],
            "profile": {"full_name": "Sam", "goal": "muscle_gain"},
        },
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Aim for 30 g of protein at dinner."
    prompt = provider.prompts[0]
    assert "User: hi\nAssistant: Hello!" in prompt
    assert prompt.endswith("User: What should I eat tonight?\nAssistant:")


@pytest.mark.asyncio
async def test_chat_unconfigured_returns_static_message(client, services, store, cache):
    gateway = AIGateway(ConfigResolver(store, make_settings()), cooldown=0.0)
    services.coach = NutritionCoach(store, gateway, cache)
    response = await client.post("/api/chat", json={"message": "hi"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["message"] == AI_UNAVAILABLE_MESSAGE


@pytest.mark.asyncio
async def test_chat_provider_failure(client, provider):
    provider.replies = [ConnectionError("reset")]
    response = await client.post("/api/chat", json={"message": "hi"}, headers=HEADERS)
    assert response.status_code == 503
    assert response.json()["error_code"] == "SERVICE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_chat_upstream_rate_limit(client, provider):
    provider.replies = [ProviderHTTPError("fake", 429, "quota")]
    response = await client.post("/api/chat", json={"message": "hi"}, headers=HEADERS)
    assert response.status_code == 429
    assert response.json()["error_code"] == "RATE_LIMIT_EXCEEDED"
    assert response.headers["retry-after"] == "1"


@pytest.mark.asyncio
async def test_chat_request_limit(client, services):
    services.rate_limiter.set_limit("/api/chat", 1, 3600)
    first = await client.post("/api/chat", json={"message": "hi"}, headers=HEADERS)
    second = await client.post("/api/chat", json={"message": "again"}, headers=HEADERS)
    other_user = await client.post("/api/chat", json={"message": "hi"}, headers={"X-User-Id": "user-2"})
    assert first.status_code == 200
    assert second.status_code == 429
    assert other_user.status_code == 200


# ============================================================================
# ADMIN
# ============================================================================

@pytest.mark.asyncio
async def test_refresh_ai_config(client, store, provider):
    store.settings_row = {"id": "ai_config", "provider": "openrouter",
                          "model": "openai/gpt-4o-mini", "api_key": "sk-or-new"}
    response = await client.post("/api/admin/ai-config/refresh")
    assert response.status_code == 200
    body = response.json()
    assert body["provider"] == "openrouter"
    assert body["configured"] is True
    assert provider.closed


# ============================================================================
# FOOD PHOTOS
# ============================================================================

FOOD_REPLY = ('```json\n{"dish_name": "Greek salad", "calories_kcal": 280, "protein_g": 9,'
              ' "carbohydrates_g": 14, "fats_g": 21, "sodium_mg": 640}\n```')


@pytest.mark.asyncio
async def test_analyze_food(client, provider):
    provider.replies = [FOOD_REPLY]
    image = base64.b64encode(b"\xff\xd8salad").decode()

    response = await client.post("/api/food/analyze",
                                 json={"image": f"data:image/jpeg;base64,{image}"}, headers=HEADERS)

    assert response.status_code == 200
    analysis = response.json()["analysis"]
    assert analysis["dish_name"] == "Greek salad"
    assert analysis["sodium_mg"] == 640
    assert analysis["fiber_g"] is None
    assert provider.images == [b"\xff\xd8salad"]


@pytest.mark.asyncio
async def test_analyze_food_bad_base64(client, provider):
    response = await client.post("/api/food/analyze", json={"image": "not base64!!"}, headers=HEADERS)
    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"
    assert provider.prompts == []


@pytest.mark.asyncio
async def test_analyze_food_unusable_reply(client, provider):
    provider.replies = ["I think that's a salad."]
    image = base64.b64encode(b"img").decode()
    response = await client.post("/api/food/analyze", json={"image": image}, headers=HEADERS)
    assert response.status_code == 503
    assert response.json()["error_code"] == "SERVICE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_error_responses_documented(client):
    schema = (await client.get("/api/openapi.json")).json()
    responses = schema["paths"]["/api/chat"]["post"]["responses"]
    assert responses["429"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
    assert "503" in schema["paths"]["/api/food/analyze"]["post"]["responses"]
