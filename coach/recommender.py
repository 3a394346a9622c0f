"""
Coach — Recommendation Generator
================================
Builds one composite prompt (today's context, learned patterns, behavioral
insights, last recommendations), sends it through the AI gateway and parses
the free-text answer into a structured draft.

The model is asked for three labeled lines:

    RECOMMENDATION: <≤30 words>
    TYPE: meal_suggestion | hydration | goal_adjustment | behavior_insight
    CONFIDENCE: <0.1-1.0>

Parsing is tolerant: labels may be wrapped in markdown bold, missing labels
fall back to defaults, and nothing raises.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from coach.behavior import BehaviorAnalysis
from coach.gateway import AIGateway
from coach.schemas import RECOMMENDATION_TYPES, BehaviorPattern, NutritionContext


DEFAULT_TYPE        = "meal_suggestion"
DEFAULT_CONFIDENCE  = 0.7
FALLBACK_CONFIDENCE = 0.5
MIN_CONFIDENCE      = 0.1
MAX_CONFIDENCE      = 1.0
RAW_PREFIX_CHARS    = 100
PAST_IN_PROMPT      = 3

_REC_RE  = re.compile(r"\**RECOMMENDATION\**:\**\s*(.*?)(?=\s*\**(?:TYPE|CONFIDENCE)\**:|\Z)", re.DOTALL)
_TYPE_RE = re.compile(r"\**TYPE\**:\**\s*([^\n]*)")
_CONF_RE = re.compile(r"\**CONFIDENCE\**:\**\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+))")


@dataclass
class ParsedRecommendation:
    text:       str
    type:       str = DEFAULT_TYPE
    confidence: float = DEFAULT_CONFIDENCE


def clamp_confidence(value: float) -> float:
    return min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, value))


# ══════════════════════════════════════════════
# PROMPT
# ══════════════════════════════════════════════

def _num(value: Any) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def _lines(items: list[str]) -> str:
    return "\n".join(items) if items else "- none yet"


def build_prompt(
    context: NutritionContext,
    past_recommendations: Sequence[Mapping[str, Any]],
    learned_patterns: Sequence[BehaviorPattern],
    analysis: BehaviorAnalysis,
) -> str:
    now, goals, profile = context.current_nutrition, context.nutrition_goals, context.user_profile

    insights = [
        f"- {i.type}: {i.pattern} (confidence: {i.confidence})"
        for i in analysis.insights
    ]
    patterns = [
        f"- {p.pattern_type}: confidence {p.confidence_level}"
        for p in learned_patterns
    ]
    past = [
        f"- \"{rec.get('recommendation_text', '')}\" "
        f"(Effectiveness: {rec.get('effectiveness_rating') or 'not rated'})"
        for rec in list(past_recommendations)[:PAST_IN_PROMPT]
    ]

    return f"""
You are an agentic AI nutrition coach that learns from each user's history. Analyze the data below and give one highly personalized recommendation.

CURRENT CONTEXT:
- Time: {context.time_of_day}, Date: {context.date}
- Current Nutrition: {_num(now.total_calories)}kcal, {_num(now.total_protein)}g Protein, {_num(now.total_carbs)}g Carbs, {_num(now.total_fat)}g Fat
- Daily Goals: {_num(goals.daily_calories_target)}kcal, {_num(goals.daily_protein_target)}g Protein, {_num(goals.daily_carbs_target)}g Carbs, {_num(goals.daily_fat_target)}g Fat
- User Profile: {profile.goal or 'general health'} goal, {_num(profile.weight)}kg current, {_num(profile.target_weight)}kg target, {_num(profile.height)}cm, BMI: {_num(profile.bmi)}
- Water Intake: {_num(context.water_intake)}ml
- Meals Logged Today: {context.meals_logged_today}

BEHAVIORAL INSIGHTS:
{_lines(insights)}

LEARNING PATTERNS:
{_lines(patterns)}

PAST RECOMMENDATIONS (Last {PAST_IN_PROMPT}):
{_lines(past)}

TASK:
Provide a 30-word max recommendation for the user's next action. Consider:
1. Time of day and what meal they should have next
2. Their behavioral patterns and consistency
3. Their progress toward daily goals
4. Past recommendation effectiveness
5. Learned patterns about their preferences

Format your response exactly as:
RECOMMENDATION: [Your 30-word max advice]
TYPE: [meal_suggestion/hydration/goal_adjustment/behavior_insight]
CONFIDENCE: [0.1-1.0]

Be specific and actionable.
""".strip()


# ══════════════════════════════════════════════
# PARSER
# ══════════════════════════════════════════════

def _parse_type(raw: str) -> str:
    candidate = raw.strip().strip("[]*`'\". ").lower()
    return candidate if candidate in RECOMMENDATION_TYPES else DEFAULT_TYPE


def parse_response(response: str) -> ParsedRecommendation:
    """Extract text, category and confidence from a labeled model answer."""
    try:
        rec_match = _REC_RE.search(response)
        text = rec_match.group(1).strip().strip("*").strip() if rec_match else ""
        if not text:
            text = response[:RAW_PREFIX_CHARS]

        type_match = _TYPE_RE.search(response)
        rec_type = _parse_type(type_match.group(1)) if type_match else DEFAULT_TYPE

        conf_match = _CONF_RE.search(response)
        try:
            confidence = float(conf_match.group(1)) if conf_match else DEFAULT_CONFIDENCE
        except ValueError:
            confidence = DEFAULT_CONFIDENCE

        return ParsedRecommendation(text, rec_type, clamp_confidence(confidence))
    except Exception:
        raw = str(response or "")
        return ParsedRecommendation(raw[:RAW_PREFIX_CHARS], DEFAULT_TYPE, FALLBACK_CONFIDENCE)


# ══════════════════════════════════════════════
# GENERATOR
# ══════════════════════════════════════════════

class RecommendationGenerator:
    """Prompt → gateway → parsed draft row."""

    def __init__(self, gateway: AIGateway):
        self.gateway = gateway

    async def generate(
        self,
        context: NutritionContext,
        past_recommendations: Sequence[Mapping[str, Any]],
        learned_patterns: Sequence[BehaviorPattern],
        analysis: BehaviorAnalysis,
    ) -> dict:
        """Draft recommendation row (without user/id). Gateway errors propagate."""
        prompt = build_prompt(context, past_recommendations, learned_patterns, analysis)
        response = await self.gateway.complete(prompt)
        parsed = parse_response(response)
        return {
            "recommendation_text": parsed.text,
            "recommendation_type": parsed.type,
            "confidence_score":    parsed.confidence,
            "context":             context.to_record(),
        }
