import pytest

from mealfinder.errors import AIUnavailableError
from mealfinder.ledger import AnswerLedger
from mealfinder.models import (
    BudgetRange,
    CuisineGenre,
    QuestionSession,
    SpiceLevel,
    TimeOfDay,
    UserProfile,
)
from mealfinder.repository import MemoryRepository


USER_ID = "user-1"


class FakeCompleter:
    """Stands in for the language model. The last reply repeats forever."""

    def __init__(self, *replies: str | Exception) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, str]] = []

    async def complete_text(
        self,
        prompt: str,
        system_instruction: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        self.calls.append((prompt, system_instruction))
        if not self.replies:
            raise AIUnavailableError("No reply configured.")
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def failing_completer() -> FakeCompleter:
    return FakeCompleter(AIUnavailableError("Model is down."))


def make_profile(
    *,
    budget_range: BudgetRange = BudgetRange.moderate,
    spice_preference: SpiceLevel = SpiceLevel.mild,
) -> UserProfile:
    return UserProfile(
        id=USER_ID,
        preferred_genres={CuisineGenre.japanese, CuisineGenre.italian},
        allergies={"えび"},
        spice_preference=spice_preference,
        budget_range=budget_range,
    )


def make_session(
    n_answers: int = 0,
    *,
    time_of_day: TimeOfDay = TimeOfDay.lunch,
) -> QuestionSession:
    session = QuestionSession(id="session-1", user_id=USER_ID, time_of_day=time_of_day)
    ledger = AnswerLedger()
    for n in range(n_answers):
        ledger.record_answer(session, f"question-{n}", n % 2 == 0, 1200)
    return session


@pytest.fixture
def profile() -> UserProfile:
    return make_profile()


@pytest.fixture
def repository(profile: UserProfile) -> MemoryRepository:
    return MemoryRepository(profiles=[profile])
