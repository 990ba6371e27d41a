import json
import logging
import math
import re
from typing import Any, TypeAlias

from mealfinder.errors import InsufficientAnswersError
from mealfinder.llm_service import TextCompleter
from mealfinder.models import (
    MIN_ANSWERS,
    Answer,
    BudgetRange,
    CuisineGenre,
    GeneratedMealRecommendation,
    Location,
    MealSource,
    Question,
    SpiceLevel,
    TimeOfDay,
    UserProfile,
)
from mealfinder.prompts import RECOMMENDATION_SYSTEM_PROMPT, recommendation_prompt


logger = logging.getLogger(__name__)


AnsweredQuestion: TypeAlias = tuple[Answer, Question | None]


BUDGET_BANDS: dict[BudgetRange, tuple[int, int]] = {
    BudgetRange.budget: (0, 500),
    BudgetRange.moderate: (500, 1000),
    BudgetRange.premium: (1000, 2000),
    BudgetRange.luxury: (2000, 10000),
}

JSON_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)

MIN_COOKING_TIME = 5
MAX_COOKING_TIME = 180
DEFAULT_COOKING_TIME = 30
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0
DEFAULT_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.6

DEFAULT_NAME = "おすすめ料理"
DEFAULT_DESCRIPTION = "美味しい料理です"
DEFAULT_REASONING = "ユーザーの好みに基づいて選択しました"
FALLBACK_REASONING = "基本的な推薦を提供しました"

FALLBACK_MEALS: dict[TimeOfDay, dict[str, Any]] = {
    TimeOfDay.breakfast: {
        "name": "和風朝食セット",
        "description": "ご飯、味噌汁、焼き魚の定番朝食",
        "cuisine_genre": CuisineGenre.japanese,
        "cooking_time_minutes": 20,
        "ingredients": ["ご飯", "味噌", "魚", "野菜"],
        "instructions": ["ご飯を炊く", "味噌汁を作る", "魚を焼く"],
    },
    TimeOfDay.lunch: {
        "name": "カレーライス",
        "description": "野菜たっぷりのカレーライス",
        "cuisine_genre": CuisineGenre.american,
        "cooking_time_minutes": 40,
        "ingredients": ["ご飯", "カレールー", "玉ねぎ", "にんじん", "じゃがいも"],
        "instructions": ["野菜を切る", "炒める", "煮込む", "ご飯にかける"],
    },
    TimeOfDay.dinner: {
        "name": "焼き魚定食",
        "description": "魚の塩焼きと小鉢の定食",
        "cuisine_genre": CuisineGenre.japanese,
        "cooking_time_minutes": 25,
        "ingredients": ["魚", "ご飯", "野菜", "味噌"],
        "instructions": ["魚を焼く", "ご飯を炊く", "味噌汁を作る"],
    },
    TimeOfDay.snack: {
        "name": "フルーツサラダ",
        "description": "季節のフルーツを使ったサラダ",
        "cuisine_genre": CuisineGenre.other,
        "cooking_time_minutes": 10,
        "ingredients": ["季節のフルーツ", "ヨーグルト", "ナッツ"],
        "instructions": ["フルーツを切る", "ヨーグルトと混ぜる", "ナッツをトッピング"],
    },
}

BASE_CALORIES: dict[CuisineGenre, int] = {
    CuisineGenre.japanese: 400,
    CuisineGenre.chinese: 550,
    CuisineGenre.korean: 500,
    CuisineGenre.italian: 650,
    CuisineGenre.french: 700,
    CuisineGenre.american: 600,
    CuisineGenre.indian: 500,
    CuisineGenre.thai: 450,
    CuisineGenre.mexican: 550,
    CuisineGenre.other: 500,
}


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def budget_midpoint(budget_range: BudgetRange) -> int:
    low, high = BUDGET_BANDS[budget_range]
    return (low + high) // 2


def validate_cuisine_genre(value: Any) -> CuisineGenre:
    try:
        return CuisineGenre.parse(value)
    except ValueError:
        return CuisineGenre.other


def validate_spice_level(value: Any, profile: UserProfile) -> SpiceLevel:
    try:
        return SpiceLevel.parse(value)
    except ValueError:
        return profile.spice_preference


def validate_price(value: Any, budget_range: BudgetRange) -> int:
    low, high = BUDGET_BANDS[budget_range]
    price = _number(value)
    if price is None:
        return budget_midpoint(budget_range)
    return round(max(low, min(price, high)))


def validate_cooking_time(value: Any) -> int:
    minutes = _number(value)
    if minutes is None:
        minutes = DEFAULT_COOKING_TIME
    return round(max(MIN_COOKING_TIME, min(minutes, MAX_COOKING_TIME)))


def validate_meal_source(value: Any) -> MealSource:
    try:
        return MealSource.parse(value)
    except ValueError:
        return MealSource.recommendation


def validate_confidence(value: Any) -> float:
    score = _number(value)
    if score is None:
        score = DEFAULT_CONFIDENCE
    return float(max(MIN_CONFIDENCE, min(score, MAX_CONFIDENCE)))


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


def validate_recommendation(
    data: dict[str, Any],
    profile: UserProfile,
) -> GeneratedMealRecommendation:
    """Clamp every field of a model-produced recommendation into range."""
    return GeneratedMealRecommendation(
        name=_text(data.get("name"), DEFAULT_NAME),
        description=_text(data.get("description"), DEFAULT_DESCRIPTION),
        cuisine_genre=validate_cuisine_genre(data.get("cuisine_genre")),
        spice_level=validate_spice_level(data.get("spice_level"), profile),
        estimated_price=validate_price(
            data.get("estimated_price"), profile.budget_range
        ),
        cooking_time_minutes=validate_cooking_time(data.get("cooking_time_minutes")),
        ingredients=_string_list(data.get("ingredients")),
        instructions=_string_list(data.get("instructions")),
        meal_source=validate_meal_source(data.get("meal_source")),
        confidence_score=validate_confidence(data.get("confidence_score")),
        reasoning=_text(data.get("reasoning"), DEFAULT_REASONING),
    )


def parse_recommendation_json(text: str) -> dict[str, Any]:
    # Models like to wrap JSON in a markdown fence, sometimes after some prose.
    fence = JSON_FENCE.search(text)
    if fence is not None:
        text = fence.group(1)
    data = json.loads(text.strip())
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}.")
    return data


def fallback_recommendation(
    profile: UserProfile,
    time_of_day: TimeOfDay,
) -> GeneratedMealRecommendation:
    meal = FALLBACK_MEALS[time_of_day]
    return GeneratedMealRecommendation(
        name=meal["name"],
        description=meal["description"],
        cuisine_genre=meal["cuisine_genre"],
        spice_level=profile.spice_preference,
        estimated_price=budget_midpoint(profile.budget_range),
        cooking_time_minutes=meal["cooking_time_minutes"],
        ingredients=list(meal["ingredients"]),
        instructions=list(meal["instructions"]),
        meal_source=MealSource.recommendation,
        confidence_score=FALLBACK_CONFIDENCE,
        reasoning=FALLBACK_REASONING,
    )


def nutritional_score(recommendation: GeneratedMealRecommendation) -> dict[str, int]:
    calories = BASE_CALORIES.get(recommendation.cuisine_genre, 500)
    return {
        "protein": round(calories * 0.15),
        "carbs": round(calories * 0.55),
        "fat": round(calories * 0.3),
        "fiber": round(calories * 0.05),
        "estimated_calories": calories,
    }


def within_budget(price: int, budget_range: BudgetRange) -> bool:
    return price <= BUDGET_BANDS[budget_range][1]


def evaluate_fit(
    recommendation: GeneratedMealRecommendation,
    profile: UserProfile,
) -> dict[str, Any]:
    score = 0.5
    reasons: list[str] = []
    improvements: list[str] = []

    if recommendation.cuisine_genre in profile.preferred_genres:
        score += 0.2
        reasons.append("好みのジャンルに合致")
    else:
        improvements.append("好みのジャンルを検討")

    if recommendation.spice_level == profile.spice_preference:
        score += 0.15
        reasons.append("辛さレベルが適切")

    if within_budget(recommendation.estimated_price, profile.budget_range):
        score += 0.15
        reasons.append("予算内に収まっている")
    else:
        improvements.append("予算を見直す")

    return {
        "fit_score": round(min(1.0, score), 2),
        "reasons": reasons,
        "improvements": improvements,
    }


class RecommendationOrchestrator:
    def __init__(
        self,
        llm: TextCompleter,
        *,
        min_answers: int = MIN_ANSWERS,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> None:
        self.llm = llm
        self.min_answers = min_answers
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def ai_recommendation(
        self,
        profile: UserProfile,
        answers: list[AnsweredQuestion],
        time_of_day: TimeOfDay,
        location: Location | None = None,
    ) -> GeneratedMealRecommendation:
        prompt = recommendation_prompt(
            profile, answers, time_of_day=time_of_day, location=location
        )
        text = await self.llm.complete_text(
            prompt,
            RECOMMENDATION_SYSTEM_PROMPT,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return validate_recommendation(parse_recommendation_json(text), profile)

    async def generate(
        self,
        profile: UserProfile,
        answers: list[AnsweredQuestion],
        time_of_day: TimeOfDay,
        location: Location | None = None,
    ) -> GeneratedMealRecommendation:
        """Recommend one meal. Falls back to a canned meal if the model fails.

        Raises:
            InsufficientAnswersError: fewer than `min_answers` answers.
        """
        if len(answers) < self.min_answers:
            raise InsufficientAnswersError(
                f"Need at least {self.min_answers} answers, got {len(answers)}."
            )

        try:
            return await self.ai_recommendation(
                profile, answers, time_of_day, location
            )
        except Exception as e:
            logger.warning("Recommendation generation failed, using fallback: %r", e)
            return fallback_recommendation(profile, time_of_day)
