from mealfinder.errors import DuplicateAnswerError, SessionNotActiveError
from mealfinder.models import (
    MAX_QUESTIONS,
    MIN_ANSWERS,
    Answer,
    Progress,
    QuestionSession,
    SessionStatus,
    new_id,
    utcnow,
)


class AnswerLedger:
    """Answer bookkeeping for a single session."""

    def __init__(
        self,
        *,
        max_questions: int = MAX_QUESTIONS,
        min_answers: int = MIN_ANSWERS,
    ) -> None:
        self.max_questions = max_questions
        self.min_answers = min_answers

    def check_can_record(self, session: QuestionSession, question_id: str) -> None:
        if session.status != SessionStatus.active:
            raise SessionNotActiveError(
                f"Session {session.id} is {session.status.value}."
            )
        if session.answer_count >= self.max_questions:
            raise SessionNotActiveError(
                f"Session {session.id} already holds {self.max_questions} answers."
            )
        if question_id in session.answered_question_ids:
            raise DuplicateAnswerError(
                f"Question {question_id} already answered in session {session.id}."
            )

    def record_answer(
        self,
        session: QuestionSession,
        question_id: str,
        response: bool,
        response_time_ms: int,
    ) -> Answer:
        self.check_can_record(session, question_id)
        answer = Answer(
            id=new_id(),
            session_id=session.id,
            question_id=question_id,
            response=response,
            response_time_ms=response_time_ms,
            question_index=session.answer_count,
            answered_at=utcnow(),
        )
        session.answers.append(answer)
        session.current_question_index = session.answer_count
        return answer

    def progress(self, session: QuestionSession) -> Progress:
        current = min(session.answer_count, self.max_questions)
        return Progress(
            current=current,
            total=self.max_questions,
            percentage=round(current / self.max_questions * 100),
        )

    def can_continue(self, session: QuestionSession) -> bool:
        return session.answer_count < self.max_questions

    def should_offer_recommendation(self, session: QuestionSession) -> bool:
        return session.answer_count >= self.min_answers

    def is_complete(self, session: QuestionSession) -> bool:
        return session.answer_count >= self.max_questions
