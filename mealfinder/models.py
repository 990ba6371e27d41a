from datetime import datetime, timezone
from enum import Enum
from typing import Any, Self
import uuid


MAX_QUESTIONS = 10
MIN_ANSWERS = 3


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClosedEnum(Enum):
    """String enum with a single canonical (lower-case) spelling."""

    @classmethod
    def parse(cls, value: Any) -> Self:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Not a valid {cls.__name__}: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Not a valid {cls.__name__}: {value!r}") from None

    @classmethod
    def values(cls) -> list[str]:
        return [m.value for m in cls]


class CuisineGenre(ClosedEnum):
    japanese = "japanese"
    chinese = "chinese"
    korean = "korean"
    italian = "italian"
    french = "french"
    american = "american"
    indian = "indian"
    thai = "thai"
    mexican = "mexican"
    other = "other"


class SpiceLevel(ClosedEnum):
    none = "none"
    mild = "mild"
    medium = "medium"
    hot = "hot"
    very_hot = "very_hot"


class BudgetRange(ClosedEnum):
    budget = "budget"
    moderate = "moderate"
    premium = "premium"
    luxury = "luxury"


class TimeOfDay(ClosedEnum):
    breakfast = "breakfast"
    lunch = "lunch"
    dinner = "dinner"
    snack = "snack"


class QuestionCategory(ClosedEnum):
    mood = "mood"
    genre = "genre"
    cooking = "cooking"
    situation = "situation"
    time = "time"
    preference = "preference"


class SessionStatus(ClosedEnum):
    active = "active"
    completed = "completed"
    abandoned = "abandoned"


class MealSource(ClosedEnum):
    recommendation = "recommendation"
    manual_entry = "manual_entry"


class Reaction(ClosedEnum):
    liked = "liked"
    disliked = "disliked"
    saved = "saved"


class Location:
    def __init__(
        self,
        *,
        latitude: float,
        longitude: float,
        prefecture: str | None = None,
        city: str | None = None,
    ) -> None:
        self.latitude = latitude
        self.longitude = longitude
        self.prefecture = prefecture
        self.city = city

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            prefecture=data.get("prefecture"),
            city=data.get("city"),
        )

    @property
    def label(self) -> str:
        return f"{self.prefecture or ''}{self.city or ''}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "prefecture": self.prefecture,
            "city": self.city,
        }


class UserProfile:
    def __init__(
        self,
        *,
        id: str,
        preferred_genres: set[CuisineGenre] | None = None,
        allergies: set[str] | None = None,
        spice_preference: SpiceLevel = SpiceLevel.medium,
        budget_range: BudgetRange = BudgetRange.moderate,
    ) -> None:
        self.id = id
        self.preferred_genres = (
            set() if preferred_genres is None else set(preferred_genres)
        )
        self.allergies = set() if allergies is None else set(allergies)
        self.spice_preference = spice_preference
        self.budget_range = budget_range

    def __repr__(self) -> str:
        return f"<UserProfile(id={self.id})>"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            id=data["id"],
            preferred_genres={
                CuisineGenre.parse(g) for g in data.get("preferred_genres", [])
            },
            allergies=set(data.get("allergies", [])),
            spice_preference=SpiceLevel.parse(data.get("spice_preference", "medium")),
            budget_range=BudgetRange.parse(data.get("budget_range", "moderate")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "preferred_genres": sorted(g.value for g in self.preferred_genres),
            "allergies": sorted(self.allergies),
            "spice_preference": self.spice_preference.value,
            "budget_range": self.budget_range.value,
        }


class Question:
    def __init__(
        self,
        *,
        id: str,
        text: str,
        category: QuestionCategory,
        priority: int,
        is_system_question: bool,
        question_index: int,
    ) -> None:
        self.id = id
        self.text = text
        self.category = category
        self.priority = priority
        self.is_system_question = is_system_question
        self.question_index = question_index

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, index={self.question_index})>"

    def at_index(self, question_index: int) -> "Question":
        return Question(
            id=self.id,
            text=self.text,
            category=self.category,
            priority=self.priority,
            is_system_question=self.is_system_question,
            question_index=question_index,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "category": self.category.value,
            "priority": self.priority,
            "is_system_question": self.is_system_question,
            "question_index": self.question_index,
        }


class Answer:
    def __init__(
        self,
        *,
        id: str,
        session_id: str,
        question_id: str,
        response: bool,
        response_time_ms: int,
        question_index: int,
        answered_at: datetime,
    ) -> None:
        self.id = id
        self.session_id = session_id
        self.question_id = question_id
        self.response = response
        self.response_time_ms = response_time_ms
        self.question_index = question_index
        self.answered_at = answered_at

    def __repr__(self) -> str:
        return f"<Answer(question_id={self.question_id}, response={self.response})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "question_id": self.question_id,
            "response": self.response,
            "response_time_ms": self.response_time_ms,
            "question_index": self.question_index,
            "answered_at": self.answered_at.isoformat(),
        }


class Progress:
    def __init__(self, *, current: int, total: int, percentage: int) -> None:
        self.current = current
        self.total = total
        self.percentage = percentage

    def to_dict(self) -> dict[str, int]:
        return {
            "current": self.current,
            "total": self.total,
            "percentage": self.percentage,
        }


class GeneratedMealRecommendation:
    def __init__(
        self,
        *,
        name: str,
        description: str,
        cuisine_genre: CuisineGenre,
        spice_level: SpiceLevel,
        estimated_price: int,
        cooking_time_minutes: int,
        ingredients: list[str],
        instructions: list[str],
        meal_source: MealSource,
        confidence_score: float,
        reasoning: str,
        id: str | None = None,
        session_id: str | None = None,
        user_reaction: Reaction | None = None,
        created_at: datetime | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.cuisine_genre = cuisine_genre
        self.spice_level = spice_level
        self.estimated_price = estimated_price
        self.cooking_time_minutes = cooking_time_minutes
        self.ingredients = ingredients
        self.instructions = instructions
        self.meal_source = meal_source
        self.confidence_score = confidence_score
        self.reasoning = reasoning
        self.id = new_id() if id is None else id
        self.session_id = session_id
        self.user_reaction = user_reaction
        self.created_at = utcnow() if created_at is None else created_at

    def __repr__(self) -> str:
        return f"<GeneratedMealRecommendation(id={self.id}, name={self.name})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "description": self.description,
            "cuisine_genre": self.cuisine_genre.value,
            "spice_level": self.spice_level.value,
            "estimated_price": self.estimated_price,
            "cooking_time_minutes": self.cooking_time_minutes,
            "ingredients": list(self.ingredients),
            "instructions": list(self.instructions),
            "meal_source": self.meal_source.value,
            "confidence_score": self.confidence_score,
            "reasoning": self.reasoning,
            "user_reaction": (
                None if self.user_reaction is None else self.user_reaction.value
            ),
            "created_at": self.created_at.isoformat(),
        }


class QuestionSession:
    def __init__(
        self,
        *,
        id: str,
        user_id: str,
        time_of_day: TimeOfDay,
        location: Location | None = None,
        current_question_index: int = 0,
        status: SessionStatus = SessionStatus.active,
        created_at: datetime | None = None,
        completed_at: datetime | None = None,
        answers: list[Answer] | None = None,
        questions: list[Question] | None = None,
        recommendation: GeneratedMealRecommendation | None = None,
    ) -> None:
        self.id = id
        self.user_id = user_id
        self.time_of_day = time_of_day
        self.location = location
        self.current_question_index = current_question_index
        self.status = status
        self.created_at = utcnow() if created_at is None else created_at
        self.completed_at = completed_at
        self.answers: list[Answer] = [] if answers is None else answers
        # Questions issued to this session, in issue order.
        self.questions: list[Question] = [] if questions is None else questions
        self.recommendation = recommendation

    def __repr__(self) -> str:
        return f"<QuestionSession(id={self.id}, status={self.status.value})>"

    @property
    def answer_count(self) -> int:
        return len(self.answers)

    @property
    def answered_question_ids(self) -> set[str]:
        return {a.question_id for a in self.answers}

    def question(self, question_id: str) -> Question | None:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    @property
    def pending_question(self) -> Question | None:
        """The issued question still waiting for an answer, if any."""
        answered = self.answered_question_ids
        for question in reversed(self.questions):
            if (
                question.id not in answered
                and question.question_index == self.answer_count + 1
            ):
                return question
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "time_of_day": self.time_of_day.value,
            "location": None if self.location is None else self.location.to_dict(),
            "current_question_index": self.current_question_index,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "completed_at": (
                None if self.completed_at is None else self.completed_at.isoformat()
            ),
            "answers": [a.to_dict() for a in self.answers],
        }
