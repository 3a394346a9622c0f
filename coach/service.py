"""
Coach — Agentic Nutrition Coach service
=======================================
Public operations used by the API and batch jobs:

  get_agentic_recommendation(user_id, context)   → RecommendationResult
  track_daily_behavior(user_id, ...)             → bool
  record_recommendation_feedback(user_id, ...)   → bool
  get_todays_recommendation(user_id)             → dict | None
  complete(prompt, image=None)                   → str   (raw chat; errors propagate)
  analyze_food_image(image)                      → FoodAnalysis | None

The recommendation pipeline never raises: every failure becomes a typed
RecommendationResult with an ErrorKind. Storage reads degrade to empty
results, storage writes report failure through their return value.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from coach.api_exceptions import RateLimitError
from coach.behavior import DEFAULT_DAYS, BehaviorAnalysis, analyze_behavior, goal_adherence_score
from coach.cache import RedisCache, todays_advice_key
from coach.food_image import FOOD_IMAGE_PROMPT, parse_food_analysis
from coach.gateway import AIGateway
from coach.patterns import PatternStore
from coach.recommender import RecommendationGenerator
from coach.schemas import BehaviorPattern, CurrentNutrition, FoodAnalysis, NutritionContext, NutritionGoals
from coach.structured_logging import logger as base_logger

logger = base_logger.bind(component="coach")

PAST_RECOMMENDATIONS = 10
REINFORCE_THRESHOLD  = 0.8
DEFAULT_MEALS_PER_DAY = 3


class ErrorKind(str, Enum):
    NO_USER        = "no_user"
    UNCONFIGURED   = "unconfigured"
    RATE_LIMITED   = "rate_limited"
    PROVIDER_ERROR = "provider_error"
    STORAGE_ERROR  = "storage_error"
    UNEXPECTED     = "unexpected"


@dataclass
class RecommendationResult:
    recommendation: Optional[dict] = None
    error_kind:     Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.recommendation is not None


def _today() -> str:
    return date.today().isoformat()


def _local_midnight_iso() -> str:
    now = datetime.now().astimezone()
    return now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()


class NutritionCoach:
    """Context-aware recommendation engine on top of the AI gateway."""

    def __init__(
        self,
        store,
        gateway: AIGateway,
        cache: RedisCache,
        patterns: Optional[PatternStore] = None,
        generator: Optional[RecommendationGenerator] = None,
        history_days: int = DEFAULT_DAYS,
    ):
        self.store = store
        self.gateway = gateway
        self.cache = cache
        self.patterns = patterns or PatternStore(store)
        self.generator = generator or RecommendationGenerator(gateway)
        self.history_days = history_days
        self.learning_enabled = True

    def set_learning_enabled(self, enabled: bool) -> None:
        self.learning_enabled = enabled

    async def complete(self, prompt: str, image: Optional[bytes] = None) -> str:
        """Direct completion for chat features; transport errors propagate."""
        return await self.gateway.complete(prompt, image)

    async def analyze_food_image(self, image: bytes) -> Optional[FoodAnalysis]:
        """Nutrition estimate for one food photo or label.

        None when the provider fails or the reply is not usable JSON;
        RateLimitError propagates so the caller can ask the user to retry.
        """
        try:
            reply = await self.gateway.complete(FOOD_IMAGE_PROMPT, image)
        except RateLimitError:
            raise
        except Exception as e:
            logger.error(f"Food image analysis failed: {e}")
            return None
        return parse_food_analysis(reply)

    # ══════════════════════════════════════════════
    # AGENTIC RECOMMENDATION
    # ══════════════════════════════════════════════

    async def get_agentic_recommendation(self, user_id: Optional[str],
                                         context: NutritionContext) -> RecommendationResult:
        if not user_id:
            logger.error("No user id given for agentic recommendation")
            return RecommendationResult(error_kind=ErrorKind.NO_USER)

        log = logger.bind(user_id=user_id)
        try:
            config = await self.gateway.resolver.resolve()
            if not config.is_configured:
                log.warning("AI provider not configured; skipping recommendation")
                return RecommendationResult(error_kind=ErrorKind.UNCONFIGURED)

            past, learned, recent = await asyncio.gather(
                self._past_recommendations(user_id, PAST_RECOMMENDATIONS),
                self._learning_patterns(user_id),
                self._recent_behavior(user_id, self.history_days),
            )
            analysis = analyze_behavior(recent)

            try:
                draft = await self.generator.generate(context, past, learned, analysis)
            except RateLimitError:
                log.warning("Recommendation deferred: provider rate limit")
                return RecommendationResult(error_kind=ErrorKind.RATE_LIMITED)
            except Exception as e:
                log.error(f"Recommendation generation failed: {e}", exc_info=True)
                return RecommendationResult(error_kind=ErrorKind.PROVIDER_ERROR)

            stored = await self._store_recommendation(user_id, draft)
            if stored is None:
                return RecommendationResult(error_kind=ErrorKind.STORAGE_ERROR)

            if stored.get("confidence_score", 0) >= REINFORCE_THRESHOLD:
                await self._update_learning_patterns(user_id, stored, analysis)

            log.log_recommendation(user_id, stored["recommendation_type"], stored["confidence_score"])
            return RecommendationResult(recommendation=stored)
        except Exception as e:
            log.error(f"Agentic recommendation process failed: {e}", exc_info=True)
            return RecommendationResult(error_kind=ErrorKind.UNEXPECTED)

    async def _past_recommendations(self, user_id: str, limit: int) -> list[dict]:
        try:
            rows = await self.store.recent_recommendations(user_id, limit)
        except Exception as e:
            logger.log_database_query("ai_recommendations", "select", 0, error=str(e))
            return []
        logger.log_database_query("ai_recommendations", "select", len(rows))
        return rows

    async def _learning_patterns(self, user_id: str) -> list[BehaviorPattern]:
        try:
            return await self.patterns.get_patterns(user_id)
        except Exception as e:
            logger.log_database_query("ai_learning_patterns", "select", 0, error=str(e))
            return []

    async def _recent_behavior(self, user_id: str, days: int) -> list[dict]:
        start = (date.today() - timedelta(days=days)).isoformat()
        try:
            rows = await self.store.behavior_since(user_id, start)
        except Exception as e:
            logger.log_database_query("user_nutrition_behavior", "select", 0, error=str(e))
            return []
        logger.log_database_query("user_nutrition_behavior", "select", len(rows))
        return rows

    async def _store_recommendation(self, user_id: str, draft: dict) -> Optional[dict]:
        try:
            row = await self.store.insert_recommendation({"user_id": user_id, **draft})
        except Exception as e:
            logger.log_database_query("ai_recommendations", "insert", 0, error=str(e))
            return None
        logger.log_database_query("ai_recommendations", "insert", 1 if row else 0)
        return row

    async def _update_learning_patterns(self, user_id: str, recommendation: dict,
                                        analysis: BehaviorAnalysis) -> None:
        if not self.learning_enabled:
            return
        if recommendation.get("recommendation_type") != "meal_suggestion":
            return
        frequency = analysis.insight("meal_frequency")
        payload = {"preferred_times": frequency.value if frequency else DEFAULT_MEALS_PER_DAY}
        try:
            await self.patterns.reinforce(user_id, "meal_timing", analysis.overall_confidence, payload)
        except Exception as e:
            logger.log_database_query("ai_learning_patterns", "upsert", 0, error=str(e))

    # ══════════════════════════════════════════════
    # DAILY TRACKING & FEEDBACK
    # ══════════════════════════════════════════════

    async def track_daily_behavior(self, user_id: Optional[str], nutrition: CurrentNutrition,
                                   water_intake: float, goals: NutritionGoals,
                                   meals_logged: int) -> bool:
        """Upsert today's behavior row. Same-day calls overwrite each other."""
        if not user_id:
            return False
        row = {
            "user_id":              user_id,
            "date":                 _today(),
            "total_calories":       round(nutrition.total_calories),
            "total_protein":        nutrition.total_protein,
            "total_carbs":          nutrition.total_carbs,
            "total_fat":            nutrition.total_fat,
            "water_intake_ml":      water_intake,
            "meals_logged":         meals_logged,
            "goal_adherence_score": goal_adherence_score(nutrition, goals),
        }
        try:
            await self.store.upsert_behavior(row)
        except Exception as e:
            logger.log_database_query("user_nutrition_behavior", "upsert", 0, error=str(e))
            return False
        logger.info("✓ Daily behavior tracked", user_id=user_id,
                    adherence=round(row["goal_adherence_score"], 3))
        return True

    async def record_recommendation_feedback(self, user_id: Optional[str], recommendation_id: str,
                                             rating: int, feedback: Optional[str] = None,
                                             was_followed: bool = False) -> bool:
        """Attach feedback to one of the user's recommendations and audit it."""
        if not user_id:
            return False
        try:
            updated = await self.store.update_recommendation(user_id, recommendation_id, {
                "effectiveness_rating": rating,
                "user_feedback":        feedback,
                "was_followed":         was_followed,
            })
        except Exception as e:
            logger.log_database_query("ai_recommendations", "update", 0, error=str(e))
            return False
        if not updated:
            logger.warning("Feedback for unknown recommendation", user_id=user_id,
                           recommendation_id=recommendation_id)
            return False

        interaction: dict[str, Any] = {
            "recommendation_id": recommendation_id,
            "interaction_type":  "feedback_given",
            "interaction_data": {
                "rating":       rating,
                "feedback":     feedback,
                "was_followed": was_followed,
                "timestamp":    datetime.now(timezone.utc).isoformat(),
            },
        }
        try:
            await self.store.insert_interaction(interaction)
        except Exception as e:
            logger.log_database_query("recommendation_interactions", "insert", 0, error=str(e))

        await self.cache.delete(todays_advice_key(user_id, _today()))
        logger.info("✓ Recommendation feedback recorded", user_id=user_id,
                    recommendation_id=recommendation_id, rating=rating)
        return True

    async def get_todays_recommendation(self, user_id: Optional[str]) -> Optional[dict]:
        """Latest recommendation since local midnight, cached for an hour."""
        if not user_id:
            return None
        key = todays_advice_key(user_id, _today())
        cached = await self.cache.get(key)
        if cached:
            logger.debug("Returning cached recommendation", user_id=user_id)
            return cached
        try:
            row = await self.store.latest_recommendation_since(user_id, _local_midnight_iso())
        except Exception as e:
            logger.log_database_query("ai_recommendations", "select", 0, error=str(e))
            return None
        if row:
            await self.cache.set(key, row)
        return row
