import logging
from typing import Iterable, Protocol

from mealfinder.catalog import QuestionCatalog
from mealfinder.llm_service import TextCompleter
from mealfinder.models import (
    Answer,
    Location,
    Question,
    QuestionCategory,
    TimeOfDay,
    UserProfile,
    new_id,
)
from mealfinder.prompts import QUESTION_SYSTEM_PROMPT, question_prompt


logger = logging.getLogger(__name__)


FALLBACK_QUESTIONS: tuple[str, ...] = (
    "今日は新しい料理に挑戦したい気分ですか？",
    "おなかはどのくらい空いていますか？",
    "一人で食事をする予定ですか？",
    "野菜をたくさん食べたい気分ですか？",
    "お米やパンなどの主食は必要ですか？",
)


AI_PRIORITY_BASE = 10
FALLBACK_PRIORITY_BASE = 20


class QuestionClassifier(Protocol):
    def classify(self, text: str) -> QuestionCategory:
        ...


class KeywordClassifier:
    """Categorises question text by the first keyword family it contains."""

    DEFAULT_FAMILIES: tuple[tuple[tuple[str, ...], QuestionCategory], ...] = (
        (("辛い", "味"), QuestionCategory.preference),
        (("気分", "今日"), QuestionCategory.mood),
        (("アレルギー", "食べられない"), QuestionCategory.preference),
        (("場所", "外食"), QuestionCategory.situation),
    )

    def __init__(
        self,
        families: Iterable[tuple[Iterable[str], QuestionCategory]] | None = None,
        *,
        default: QuestionCategory = QuestionCategory.preference,
    ) -> None:
        families = self.DEFAULT_FAMILIES if families is None else families
        self.families = tuple((tuple(kwords), cat) for kwords, cat in families)
        self.default = default

    def classify(self, text: str) -> QuestionCategory:
        for kwords, category in self.families:
            if any(kword in text for kword in kwords):
                return category
        return self.default


def fallback_question(answer_count: int) -> Question:
    return Question(
        id=new_id(),
        text=FALLBACK_QUESTIONS[answer_count % len(FALLBACK_QUESTIONS)],
        category=QuestionCategory.preference,
        priority=FALLBACK_PRIORITY_BASE + answer_count,
        is_system_question=False,
        question_index=answer_count + 1,
    )


class QuestionGenerator:
    def __init__(
        self,
        llm: TextCompleter,
        *,
        catalog: QuestionCatalog | None = None,
        classifier: QuestionClassifier | None = None,
        temperature: float = 0.7,
        max_tokens: int = 150,
    ) -> None:
        self.llm = llm
        self.catalog = QuestionCatalog() if catalog is None else catalog
        self.classifier = KeywordClassifier() if classifier is None else classifier
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def ai_question(
        self,
        profile: UserProfile,
        previous_answers: list[Answer],
        time_of_day: TimeOfDay,
        location: Location | None = None,
    ) -> Question:
        n = len(previous_answers)
        prompt = question_prompt(
            profile, answer_count=n, time_of_day=time_of_day, location=location
        )
        text = await self.llm.complete_text(
            prompt,
            QUESTION_SYSTEM_PROMPT,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        text = text.strip()
        if not text:
            raise ValueError("Empty question text.")
        return Question(
            id=new_id(),
            text=text,
            category=self.classifier.classify(text),
            priority=AI_PRIORITY_BASE + n,
            is_system_question=False,
            question_index=n + 1,
        )

    async def next_question(
        self,
        profile: UserProfile,
        previous_answers: list[Answer],
        time_of_day: TimeOfDay,
        location: Location | None = None,
    ) -> Question:
        """Never raises. Catalog, then the model, then the canned rotation."""
        n = len(previous_answers)
        system_question = self.catalog.next_unanswered(
            a.question_id for a in previous_answers
        )
        if system_question is not None:
            return system_question.at_index(n + 1)

        try:
            return await self.ai_question(
                profile, previous_answers, time_of_day, location
            )
        except Exception as e:
            logger.warning("Question generation failed, using fallback: %r", e)
            return fallback_question(n)
