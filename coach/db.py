"""
Coach — Supabase Database Layer

Handles: recommendation rows, learned patterns, daily behavior aggregates,
the stored AI configuration and the feedback audit trail.
Schema is owned by the Supabase project; this module only reads and upserts.
Methods raise on transport errors; callers decide how to degrade.
"""

from typing import Any, Optional

from supabase import acreate_client, AsyncClient

from coach.settings import Settings


RECOMMENDATIONS = "ai_recommendations"
PATTERNS        = "ai_learning_patterns"
BEHAVIOR        = "user_nutrition_behavior"
SETTINGS        = "app_settings"
INTERACTIONS    = "recommendation_interactions"

AI_CONFIG_ID    = "ai_config"


async def connect(settings: Settings) -> AsyncClient:
    url, key = settings.supabase_url, settings.supabase_key
    if not url or "your-project-ref" in url:
        raise RuntimeError(
            "SUPABASE_URL not set. Paste your project URL into .env\n"
            "  It looks like: https://xxxxxxxxxxxx.supabase.co"
        )
    if not key:
        raise RuntimeError("SUPABASE_KEY not set in .env")
    return await acreate_client(url, key)


class SupabaseStore:
    """Thin async query/upsert facade over the coach tables."""

    def __init__(self, client: AsyncClient):
        self.client = client

    # ──────────────────────────────────────────────
    # RECOMMENDATIONS
    # ──────────────────────────────────────────────

    async def recent_recommendations(self, user_id: str, limit: int = 10) -> list[dict]:
        """Newest-first recommendation rows for a user."""
        result = await (
            self.client.table(RECOMMENDATIONS)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def latest_recommendation_since(self, user_id: str, since_iso: str) -> Optional[dict]:
        """Newest recommendation created at or after `since_iso`, if any."""
        result = await (
            self.client.table(RECOMMENDATIONS)
            .select("*")
            .eq("user_id", user_id)
            .gte("created_at", since_iso)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def insert_recommendation(self, row: dict) -> Optional[dict]:
        result = await self.client.table(RECOMMENDATIONS).insert(row).execute()
        return result.data[0] if result.data else None

    async def update_recommendation(self, user_id: str, recommendation_id: str, fields: dict) -> int:
        """Patch one of the user's recommendations. Returns rows touched."""
        result = await (
            self.client.table(RECOMMENDATIONS)
            .update(fields)
            .eq("id", recommendation_id)
            .eq("user_id", user_id)
            .execute()
        )
        return len(result.data or [])

    async def insert_interaction(self, row: dict) -> bool:
        result = await self.client.table(INTERACTIONS).insert(row).execute()
        return bool(result.data)

    # ──────────────────────────────────────────────
    # LEARNED PATTERNS
    # ──────────────────────────────────────────────

    async def patterns(self, user_id: str, min_confidence: float = 0.0) -> list[dict]:
        result = await (
            self.client.table(PATTERNS)
            .select("*")
            .eq("user_id", user_id)
            .gte("confidence_level", min_confidence)
            .order("confidence_level", desc=True)
            .execute()
        )
        return result.data or []

    async def pattern(self, user_id: str, pattern_type: str) -> Optional[dict]:
        result = await (
            self.client.table(PATTERNS)
            .select("*")
            .eq("user_id", user_id)
            .eq("pattern_type", pattern_type)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def upsert_pattern(self, row: dict) -> bool:
        result = await (
            self.client.table(PATTERNS)
            .upsert(row, on_conflict="user_id,pattern_type")
            .execute()
        )
        return bool(result.data)

    # ──────────────────────────────────────────────
    # DAILY BEHAVIOR
    # ──────────────────────────────────────────────

    async def behavior_since(self, user_id: str, start_date: str) -> list[dict]:
        """Behavior rows with date >= `start_date` (YYYY-MM-DD), newest first."""
        result = await (
            self.client.table(BEHAVIOR)
            .select("*")
            .eq("user_id", user_id)
            .gte("date", start_date)
            .order("date", desc=True)
            .execute()
        )
        return result.data or []

    async def upsert_behavior(self, row: dict) -> bool:
        result = await (
            self.client.table(BEHAVIOR)
            .upsert(row, on_conflict="user_id,date")
            .execute()
        )
        return bool(result.data)

    # ──────────────────────────────────────────────
    # SETTINGS
    # ──────────────────────────────────────────────

    async def ai_settings(self) -> Optional[dict[str, Any]]:
        result = await (
            self.client.table(SETTINGS)
            .select("*")
            .eq("id", AI_CONFIG_ID)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def ping(self) -> bool:
        """Cheap round-trip used by the health check."""
        await self.client.table(SETTINGS).select("id").limit(1).execute()
        return True
