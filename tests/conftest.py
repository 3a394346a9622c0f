"""
Shared fixtures and in-memory doubles for the coach test suite.

FakeStore mirrors SupabaseStore method for method, FakeRedis covers the few
redis.asyncio calls RedisCache makes, and FakeProvider records every
completion it serves.
"""

import asyncio
import itertools
import json
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import redis.asyncio as redis

from coach.cache import RedisCache
from coach.config import AIConfig, ConfigResolver
from coach.gateway import AIGateway
from coach.providers import ProviderClient
from coach.service import NutritionCoach
from coach.settings import Settings


# ============================================================================
# DOUBLES
# ============================================================================

class FakeStore:
    """In-memory stand-in for coach.db.SupabaseStore."""

    def __init__(self):
        self.recommendations: list[dict] = []
        self.pattern_rows: dict[tuple[str, str], dict] = {}
        self.behavior_rows: dict[tuple[str, str], dict] = {}
        self.interactions: list[dict] = []
        self.settings_row: Optional[dict] = None
        self.failing: set[str] = set()
        self._ids = itertools.count(1)

    def fail(self, *operations: str):
        self.failing.update(operations)

    def _check(self, operation: str):
        if operation in self.failing:
            raise RuntimeError(f"{operation} unavailable")

    async def recent_recommendations(self, user_id, limit=10):
        self._check("recent_recommendations")
        rows = [r for r in self.recommendations if r["user_id"] == user_id]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows[:limit]

    async def latest_recommendation_since(self, user_id, since_iso):
        self._check("latest_recommendation_since")
        since = datetime.fromisoformat(since_iso)
        rows = [
            r for r in self.recommendations
            if r["user_id"] == user_id and datetime.fromisoformat(r["created_at"]) >= since
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows[0] if rows else None

    async def insert_recommendation(self, row):
        self._check("insert_recommendation")
        stored = {
            "id": f"rec-{next(self._ids)}",
            "created_at": datetime.now(timezone.utc).isoformat(),
            "effectiveness_rating": None,
            "user_feedback": None,
            "was_followed": None,
            **row,
        }
        self.recommendations.append(stored)
        return dict(stored)

    async def update_recommendation(self, user_id, recommendation_id, fields):
        self._check("update_recommendation")
        touched = 0
        for row in self.recommendations:
            if row["id"] == recommendation_id and row["user_id"] == user_id:
                row.update(fields)
                touched += 1
        return touched

    async def insert_interaction(self, row):
        self._check("insert_interaction")
        self.interactions.append(row)
        return True

    async def patterns(self, user_id, min_confidence=0.0):
        self._check("patterns")
        rows = [
            r for (uid, _), r in self.pattern_rows.items()
            if uid == user_id and r["confidence_level"] >= min_confidence
        ]
        return sorted(rows, key=lambda r: r["confidence_level"], reverse=True)

    async def pattern(self, user_id, pattern_type):
        self._check("pattern")
        return self.pattern_rows.get((user_id, pattern_type))

    async def upsert_pattern(self, row):
        self._check("upsert_pattern")
        self.pattern_rows[(row["user_id"], row["pattern_type"])] = dict(row)
        return True

    async def behavior_since(self, user_id, start_date):
        self._check("behavior_since")
        rows = [
            r for (uid, day), r in self.behavior_rows.items()
            if uid == user_id and day >= start_date
        ]
        return sorted(rows, key=lambda r: r["date"], reverse=True)

    async def upsert_behavior(self, row):
        self._check("upsert_behavior")
        self.behavior_rows[(row["user_id"], row["date"])] = dict(row)
        return True

    async def ai_settings(self):
        self._check("ai_settings")
        return self.settings_row

    async def ping(self):
        self._check("ping")
        return True


class FakeRedis:
    """Just enough of redis.asyncio.Redis for RedisCache."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise redis.ConnectionError("redis is down")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        self._check()
        self.data.pop(key, None)
        self.ttls.pop(key, None)

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        return None


class FakeProvider(ProviderClient):
    """Scripted provider. Each reply is a string or an exception to raise."""

    name = "fake"

    def __init__(self, replies=None, clock=None, model="fake-model"):
        super().__init__(model, "test-credential")
        self.replies = list(replies or [])
        self.default_reply = "RECOMMENDATION: Drink a glass of water.\nTYPE: hydration\nCONFIDENCE: 0.6"
        self.clock = clock
        self.prompts: list[str] = []
        self.images: list[Optional[bytes]] = []
        self.started_at: list[float] = []
        self.closed = False

    async def complete(self, prompt, image=None):
        self.prompts.append(prompt)
        self.images.append(image)
        if self.clock is not None:
            self.started_at.append(self.clock())
        await asyncio.sleep(0)
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def aclose(self):
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when the gateway sleeps."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def make_settings(**overrides: Any) -> Settings:
    values = dict(
        supabase_url="https://test.supabase.co",
        supabase_key="service-key",
        redis_url=None,
        ai_provider="",
        ai_model="",
        ai_api_key="",
        cooldown_seconds=0.0,
        site_url="http://localhost:8000",
        app_name="Nutrition Coach",
        ollama_host=None,
        log_file=None,
        sentry_dsn=None,
    )
    values.update(overrides)
    return Settings(**values)


def configured_resolver(store, provider: ProviderClient, settings: Optional[Settings] = None) -> ConfigResolver:
    """Resolver already memoized on `provider`."""
    resolver = ConfigResolver(store, settings or make_settings())
    resolver._cached = AIConfig("gemini", provider.model, "real-test-key", source="env")
    resolver._client = provider
    return resolver


def behavior_day(days_ago: int, user_id: str = "user-1", **fields: Any) -> dict:
    row = {
        "user_id": user_id,
        "date": (date.today() - timedelta(days=days_ago)).isoformat(),
        "total_calories": 1900,
        "total_protein": 120,
        "total_carbs": 220,
        "total_fat": 60,
        "water_intake_ml": 2100,
        "meals_logged": 3,
        "goal_adherence_score": 0.65,
    }
    row.update(fields)
    return row


def cached_value(fake_redis: FakeRedis, key: str):
    raw = fake_redis.data.get(key)
    return json.loads(raw) if raw else None


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return RedisCache(fake_redis)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider(clock):
    return FakeProvider(clock=clock)


@pytest.fixture
async def gateway(store, provider, clock):
    gw = AIGateway(configured_resolver(store, provider), cooldown=2.0, clock=clock, sleep=clock.sleep)
    yield gw
    await gw.aclose()


@pytest.fixture
async def coach(store, cache, gateway):
    return NutritionCoach(store, gateway, cache)


@pytest.fixture
def user_id():
    return "user-1"
