"""
Food photo analysis.

One prompt asks the model for per-serving nutrition as a bare JSON object.
Replies wrapped in markdown fences are unwrapped; anything that does not
validate as a FoodAnalysis is treated as "no analysis".
"""

import base64
import binascii
import json
import re
from typing import Optional

from pydantic import ValidationError as SchemaError

from coach.api_exceptions import ValidationError
from coach.schemas import FoodAnalysis
from coach.structured_logging import logger as base_logger

logger = base_logger.bind(component="food_image")

FOOD_IMAGE_PROMPT = (
    "Analyze this image of a food product or dish. "
    "If it's a nutrition label, extract the exact values per serving. "
    "If it's a photo of a dish, estimate the nutritional values. "
    "Return ONLY a JSON object with these keys: dish_name (string), calories_kcal (number), "
    "protein_g (number), carbohydrates_g (number), fats_g (number), fiber_g (number), "
    "sugar_g (number), sodium_mg (number). Do not include markdown or explanations."
)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def decode_image(data: str) -> bytes:
    """Raw bytes from base64 text, with or without a ``data:`` URL prefix."""
    payload = data.split(",", 1)[1] if data.startswith("data:") and "," in data else data
    try:
        image = base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Image is not valid base64", field="image") from e
    if not image:
        raise ValidationError("Image is empty", field="image")
    return image


def parse_food_analysis(text: Optional[str]) -> Optional[FoodAnalysis]:
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        return FoodAnalysis.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, SchemaError) as e:
        logger.warning("Food analysis reply could not be parsed", error=str(e))
        return None
