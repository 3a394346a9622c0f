"""
Learned pattern store.

One live row per (user, pattern_type). Reinforcement never lowers confidence:

    new = max(existing or 0.5, evidence × 0.8)
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from coach.schemas import BehaviorPattern
from coach.structured_logging import logger as base_logger

logger = base_logger.bind(component="patterns")

BASELINE_CONFIDENCE = 0.5
EVIDENCE_DISCOUNT   = 0.8
PATTERN_TYPES = ("meal_timing", "food_preferences", "goal_trends", "hydration_patterns")


def merge_confidence(existing: Optional[float], evidence: float) -> float:
    base = BASELINE_CONFIDENCE if existing is None else existing
    return max(base, evidence * EVIDENCE_DISCOUNT)


class PatternStore:
    """Merges evidence into ``ai_learning_patterns`` rows."""

    def __init__(self, store):
        self.store = store

    async def get_patterns(self, user_id: str, min_confidence: float = BASELINE_CONFIDENCE) -> list[BehaviorPattern]:
        """Patterns at or above `min_confidence`, most confident first.

        Rows that do not validate (unknown type, confidence out of range) are
        logged and skipped; the rest are still returned.
        """
        rows = await self.store.patterns(user_id, min_confidence)
        patterns = []
        for row in rows:
            try:
                patterns.append(BehaviorPattern(
                    pattern_type=row.get("pattern_type"),
                    pattern_data=row.get("pattern_data"),
                    confidence_level=row.get("confidence_level", BASELINE_CONFIDENCE),
                    last_applied=row.get("last_applied"),
                ))
            except ValidationError as e:
                logger.warning("Skipping invalid learned pattern row", user_id=user_id,
                               pattern_type=row.get("pattern_type"), error=str(e))
        return patterns

    async def reinforce(self, user_id: str, pattern_type: str, evidence_confidence: float,
                        payload: dict[str, Any]) -> float:
        """Upsert the merged confidence and return it."""
        if pattern_type not in PATTERN_TYPES:
            raise ValueError(f"Unknown pattern type: {pattern_type}")

        existing = await self.store.pattern(user_id, pattern_type)
        current = existing.get("confidence_level") if existing else None
        confidence = merge_confidence(current, evidence_confidence)

        await self.store.upsert_pattern({
            "user_id":          user_id,
            "pattern_type":     pattern_type,
            "pattern_data":     {**payload, "confidence": confidence},
            "confidence_level": confidence,
            "last_applied":     datetime.now(timezone.utc).isoformat(),
        })
        logger.info(f"Pattern {pattern_type} reinforced", user_id=user_id,
                    previous=current, confidence=round(confidence, 3))
        return confidence
