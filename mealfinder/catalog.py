"""The fixed questions every session opens with."""

from typing import Iterable

from mealfinder.models import Question, QuestionCategory


SYSTEM_QUESTIONS: tuple[Question, ...] = tuple(
    Question(
        id=id,
        text=text,
        category=category,
        priority=n,
        is_system_question=True,
        question_index=n,
    )
    for n, (id, text, category) in enumerate(
        (
            (
                "11111111-1111-1111-1111-111111111111",
                "今日は何か特別な気分ですか？",
                QuestionCategory.mood,
            ),
            (
                "22222222-2222-2222-2222-222222222222",
                "辛い料理は好きですか？",
                QuestionCategory.preference,
            ),
            (
                "33333333-3333-3333-3333-333333333333",
                "今日は軽めの食事がいいですか？",
                QuestionCategory.preference,
            ),
            (
                "44444444-4444-4444-4444-444444444444",
                "温かい料理を食べたいですか？",
                QuestionCategory.preference,
            ),
            (
                "55555555-5555-5555-5555-555555555555",
                "外食気分ですか？",
                QuestionCategory.situation,
            ),
        ),
        start=1,
    )
)


class QuestionCatalog:
    def __init__(self, questions: Iterable[Question] = SYSTEM_QUESTIONS) -> None:
        self.questions = tuple(questions)

    def __len__(self) -> int:
        return len(self.questions)

    def __contains__(self, question_id: object) -> bool:
        return any(q.id == question_id for q in self.questions)

    def next_unanswered(self, answered_question_ids: Iterable[str]) -> Question | None:
        """First question not yet answered, in catalog order."""
        answered = set(answered_question_ids)
        for question in self.questions:
            if question.id not in answered:
                return question
        return None
