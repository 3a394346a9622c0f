"""
Coach — Behavioral Analysis Engine  (coach/behavior.py)
=======================================================
Turns the trailing days of ``user_nutrition_behavior`` rows into four labeled
insights that are fed into the recommendation prompt.

  meal_frequency       mean meals/day       consistent ≥ 3      | irregular
  protein_consistency  population stddev    consistent < 20 g   | variable
  hydration            mean water (ml)      adequate ≥ 2000     | insufficient
  goal_adherence       mean adherence       excellent ≥ 0.8 | good ≥ 0.6 | needs_improvement

Each insight has a fixed confidence; overall_confidence is their plain mean,
independent of how many days were observed.

Public API:
  analyze_behavior(rows) -> BehaviorAnalysis
  goal_adherence_score(nutrition, goals) -> float in [0, 1]
"""
from __future__ import annotations

import statistics
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

from coach.schemas import BehaviorDay, CurrentNutrition, NutritionGoals


EMPTY_CONFIDENCE   = 0.1
DEFAULT_DAYS       = 7

MEALS_CONSISTENT   = 3
PROTEIN_STDDEV_MAX = 20.0
WATER_ADEQUATE_ML  = 2000.0
ADHERENCE_EXCELLENT = 0.8
ADHERENCE_GOOD      = 0.6

_CONFIDENCE = {
    "meal_frequency":      0.7,
    "protein_consistency": 0.6,
    "hydration":           0.8,
    "goal_adherence":      0.7,
}

Row = Union[BehaviorDay, Mapping[str, Any]]


# ──────────────────────────────────────────────
# HELPERS
# ──────────────────────────────────────────────

def _field(row: Row, name: str) -> float:
    raw = getattr(row, name, None) if isinstance(row, BehaviorDay) else row.get(name)
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def _ratio(consumed: float, target: float) -> float:
    if target <= 0:
        return 0.0
    return max(0.0, min(1.0, consumed / target))


def goal_adherence_score(nutrition: CurrentNutrition, goals: NutritionGoals) -> float:
    """Mean of consumed/target for calories, protein, carbs and fat, each capped at 1."""
    ratios = [
        _ratio(nutrition.total_calories, goals.daily_calories_target),
        _ratio(nutrition.total_protein,  goals.daily_protein_target),
        _ratio(nutrition.total_carbs,    goals.daily_carbs_target),
        _ratio(nutrition.total_fat,      goals.daily_fat_target),
    ]
    return sum(ratios) / len(ratios)


# ──────────────────────────────────────────────
# DATA STRUCTURES
# ──────────────────────────────────────────────

@dataclass
class Insight:
    type:       str
    value:      float
    pattern:    str
    confidence: float
    stddev:     Optional[float] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.stddev is None:
            data.pop("stddev")
        return data


@dataclass
class BehaviorAnalysis:
    insights:           list[Insight] = field(default_factory=list)
    overall_confidence: float = EMPTY_CONFIDENCE
    days_observed:      int = 0

    def insight(self, insight_type: str) -> Optional[Insight]:
        return next((i for i in self.insights if i.type == insight_type), None)

    def to_dict(self) -> dict:
        return {
            "insights":           [i.to_dict() for i in self.insights],
            "overall_confidence": self.overall_confidence,
            "days_observed":      self.days_observed,
        }


# ──────────────────────────────────────────────
# CORE ANALYSIS
# ──────────────────────────────────────────────

def analyze_behavior(rows: Iterable[Row]) -> BehaviorAnalysis:
    """Label the user's recent days. Empty history → no insights, confidence 0.1."""
    days = list(rows)
    if not days:
        return BehaviorAnalysis()

    meals     = [_field(d, "meals_logged") for d in days]
    protein   = [_field(d, "total_protein") for d in days]
    water     = [_field(d, "water_intake_ml") for d in days]
    adherence = [_field(d, "goal_adherence_score") for d in days]

    avg_meals = statistics.mean(meals)
    avg_protein = statistics.mean(protein)
    protein_sd = statistics.pstdev(protein, avg_protein)
    avg_water = statistics.mean(water)
    avg_adherence = statistics.mean(adherence)

    if avg_adherence >= ADHERENCE_EXCELLENT:
        adherence_label = "excellent"
    elif avg_adherence >= ADHERENCE_GOOD:
        adherence_label = "good"
    else:
        adherence_label = "needs_improvement"

    insights = [
        Insight("meal_frequency", avg_meals,
                "consistent" if avg_meals >= MEALS_CONSISTENT else "irregular",
                _CONFIDENCE["meal_frequency"]),
        Insight("protein_consistency", avg_protein,
                "consistent" if protein_sd < PROTEIN_STDDEV_MAX else "variable",
                _CONFIDENCE["protein_consistency"], stddev=protein_sd),
        Insight("hydration", avg_water,
                "adequate" if avg_water >= WATER_ADEQUATE_ML else "insufficient",
                _CONFIDENCE["hydration"]),
        Insight("goal_adherence", avg_adherence, adherence_label,
                _CONFIDENCE["goal_adherence"]),
    ]

    return BehaviorAnalysis(
        insights=insights,
        overall_confidence=statistics.mean(i.confidence for i in insights),
        days_observed=len(days),
    )
