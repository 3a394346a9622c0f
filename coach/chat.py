"""
Coach chat prompt.

Simple chat bypasses the agentic pipeline: one prompt with the profile,
today's progress and the running conversation goes straight to the gateway.
"""

from typing import Any, Mapping, Sequence

from coach.schemas import ChatMessage, CurrentNutrition, NutritionGoals

CHAT_UNAVAILABLE_REPLY = (
    "I'm sorry, I'm having trouble connecting right now. Please try again in a moment."
)

COACH_INSTRUCTIONS = """Instructions:
1. Provide professional, encouraging, and science-based advice.
2. Help with workout plan suggestions and nutrition insights.
3. Keep responses concise but helpful.
4. If the user asks for a workout plan, suggest specific exercises based on their goal.
5. If they ask about nutrition, refer to their current intake vs targets."""


def build_chat_prompt(
    profile: Mapping[str, Any],
    nutrition: CurrentNutrition,
    goals: NutritionGoals,
    water_intake: float,
    history: Sequence[ChatMessage],
    message: str,
) -> str:
    def p(key: str) -> str:
        value = profile.get(key)
        return "n/a" if value in (None, "") else str(value)

    system = f"""You are an expert Fitness and Nutrition Coach.

User Profile:
- Name: {p('full_name')}
- Goal: {p('goal')}
- Gender: {p('gender')}
- Current Weight: {p('weight')}kg
- Target Weight: {p('target_weight')}kg
- Height: {p('height')}cm

Today's Progress:
- Calories: {nutrition.total_calories:g}/{goals.daily_calories_target:g} kcal
- Protein: {nutrition.total_protein:g}/{goals.daily_protein_target:g}g
- Water: {water_intake:g}ml

{COACH_INSTRUCTIONS}"""

    transcript = "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in history
    )
    return f"{system}\n\nChat History:\n{transcript}\n\nUser: {message}\nAssistant:"
