"""
Request, response and context models for the nutrition coach.

Stored JSON keeps the mobile app's key names (``totalCalories``,
``daily_calories_target`` ...), so camelCase fields carry an alias and every
model accepts either spelling.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


PatternType = Literal["meal_timing", "food_preferences", "goal_trends", "hydration_patterns"]
RecommendationType = Literal["meal_suggestion", "hydration", "goal_adjustment", "behavior_insight"]
TimeOfDay = Literal["morning", "afternoon", "evening", "night"]

RECOMMENDATION_TYPES: tuple[str, ...] = (
    "meal_suggestion", "hydration", "goal_adjustment", "behavior_insight",
)


def time_of_day(hour: Optional[int] = None) -> str:
    """Bucket a local hour: 5-12 morning, 12-17 afternoon, 17-21 evening, else night."""
    if hour is None:
        hour = datetime.now().hour
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


# ══════════════════════════════════════════════
# CONTEXT MODELS
# ══════════════════════════════════════════════

class CurrentNutrition(BaseModel):
    """Macro totals consumed so far today."""
    model_config = ConfigDict(populate_by_name=True)

    total_calories: float = Field(0, ge=0, alias="totalCalories")
    total_protein:  float = Field(0, ge=0, alias="totalProtein")
    total_carbs:    float = Field(0, ge=0, alias="totalCarbs")
    total_fat:      float = Field(0, ge=0, alias="totalFat")


class NutritionGoals(BaseModel):
    """Daily macro targets."""
    daily_calories_target: float = Field(2000, ge=0)
    daily_protein_target:  float = Field(150, ge=0)
    daily_carbs_target:    float = Field(250, ge=0)
    daily_fat_target:      float = Field(65, ge=0)


class UserProfileSnapshot(BaseModel):
    """Denormalized profile fields copied into each context."""
    weight:        Optional[float] = None
    target_weight: Optional[float] = None
    height:        Optional[float] = None
    goal:          Optional[str] = None
    bmi:           Optional[float] = None


class BehaviorPattern(BaseModel):
    """A learned belief about a user's habits."""
    pattern_type:     PatternType
    pattern_data:     Any = None
    confidence_level: float = Field(0.5, ge=0, le=1)
    last_applied:     Optional[str] = None


class NutritionContext(BaseModel):
    """Point-in-time snapshot used to generate one recommendation."""
    current_nutrition:  CurrentNutrition = Field(default_factory=CurrentNutrition)
    nutrition_goals:    NutritionGoals = Field(default_factory=NutritionGoals)
    user_profile:       UserProfileSnapshot = Field(default_factory=UserProfileSnapshot)
    water_intake:       float = Field(0, ge=0)
    date:               str = Field(default_factory=_today)
    time_of_day:        TimeOfDay = Field(default_factory=time_of_day)
    meals_logged_today: int = Field(0, ge=0)
    recent_behavior:    Optional[List[BehaviorPattern]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "current_nutrition": {"totalCalories": 1200, "totalProtein": 80,
                                      "totalCarbs": 140, "totalFat": 40},
                "nutrition_goals": {"daily_calories_target": 2000, "daily_protein_target": 150,
                                    "daily_carbs_target": 250, "daily_fat_target": 65},
                "user_profile": {"weight": 82, "target_weight": 75, "height": 178,
                                 "goal": "weight_loss", "bmi": 25.9},
                "water_intake": 1500,
                "meals_logged_today": 2,
            }
        }
    )

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready dict with the stored key names."""
        return self.model_dump(mode="json", by_alias=True)


class BehaviorDay(BaseModel):
    """One ``user_nutrition_behavior`` row."""
    date:                 str
    total_calories:       float = 0
    total_protein:        float = 0
    total_carbs:          float = 0
    total_fat:            float = 0
    water_intake_ml:      float = 0
    meals_logged:         int = 0
    goal_adherence_score: float = 0


# ══════════════════════════════════════════════
# REQUEST MODELS
# ══════════════════════════════════════════════

class TrackBehaviorRequest(BaseModel):
    """Daily behavior tracking request."""
    nutrition:    CurrentNutrition
    water_intake: float = Field(0, ge=0)
    goals:        NutritionGoals = Field(default_factory=NutritionGoals)
    meals_logged: int = Field(0, ge=0)


class FeedbackRequest(BaseModel):
    """Feedback on one recommendation."""
    rating:       int = Field(..., ge=1, le=5)
    feedback:     Optional[str] = Field(None, max_length=500)
    was_followed: bool = False

    model_config = ConfigDict(
        json_schema_extra={"example": {"rating": 4, "feedback": "Tried it at lunch", "was_followed": True}}
    )


class ChatMessage(BaseModel):
    role:    Literal["user", "assistant"]
    content: str = Field(..., max_length=4000)


class ChatRequest(BaseModel):
    """Direct coach chat request."""
    message:      str = Field(..., min_length=1, max_length=2000)
    history:      List[ChatMessage] = Field(default_factory=list, max_length=50)
    profile:      Dict[str, Any] = Field(default_factory=dict)
    nutrition:    CurrentNutrition = Field(default_factory=CurrentNutrition)
    goals:        NutritionGoals = Field(default_factory=NutritionGoals)
    water_intake: float = Field(0, ge=0)


class FoodImageRequest(BaseModel):
    """Photo of a dish or nutrition label, base64 or a data URL."""
    image: str = Field(..., min_length=1)


# ══════════════════════════════════════════════
# RESPONSE MODELS
# ══════════════════════════════════════════════

class ErrorResponse(BaseModel):
    """Standard error response."""
    success:    bool = False
    error:      str
    error_code: str
    details:    Optional[Dict[str, Any]] = None


class RecommendationResponse(BaseModel):
    success:        bool = True
    recommendation: Optional[Dict[str, Any]] = None
    error_kind:     Optional[str] = None


class FoodAnalysis(BaseModel):
    """Per-serving nutrition read from a food photo or label."""
    dish_name:       str
    calories_kcal:   float = Field(..., ge=0)
    protein_g:       float = Field(..., ge=0)
    carbohydrates_g: float = Field(..., ge=0)
    fats_g:          float = Field(..., ge=0)
    fiber_g:         Optional[float] = Field(None, ge=0)
    sugar_g:         Optional[float] = Field(None, ge=0)
    sodium_mg:       Optional[float] = Field(None, ge=0)


class FoodAnalysisResponse(BaseModel):
    success:  bool = True
    analysis: FoodAnalysis


class ChatResponse(BaseModel):
    success:   bool = True
    message:   str
    timestamp: datetime


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status:         str
    uptime_seconds: float
    timestamp:      str
    services:       Dict[str, Any]
