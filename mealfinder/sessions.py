"""Session lifecycle: active -> completed | abandoned.

Completed and abandoned are terminal. The machine only decides; persisting
the outcome is left to the caller.
"""

import enum

from mealfinder.errors import (
    InsufficientAnswersError,
    SessionExhaustedError,
    SessionNotActiveError,
)
from mealfinder.ledger import AnswerLedger
from mealfinder.models import QuestionSession, SessionStatus, utcnow


TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.active: frozenset({SessionStatus.completed, SessionStatus.abandoned}),
    SessionStatus.completed: frozenset(),
    SessionStatus.abandoned: frozenset(),
}


class Turn(enum.Enum):
    """What should happen after an answer has been recorded."""

    ask = "ask"
    offer_recommendation = "offer_recommendation"
    complete = "complete"


class SessionStateMachine:
    def __init__(self, ledger: AnswerLedger | None = None) -> None:
        self.ledger = AnswerLedger() if ledger is None else ledger

    def can_transition(self, session: QuestionSession, status: SessionStatus) -> bool:
        return status in TRANSITIONS[session.status]

    def transition(self, session: QuestionSession, status: SessionStatus) -> None:
        if not self.can_transition(session, status):
            raise SessionNotActiveError(
                f"Session {session.id} cannot go from "
                f"{session.status.value} to {status.value}."
            )
        session.status = status
        if status == SessionStatus.completed:
            session.completed_at = utcnow()

    def check_can_ask(self, session: QuestionSession) -> None:
        if session.status != SessionStatus.active:
            raise SessionExhaustedError(
                f"Session {session.id} is {session.status.value}."
            )
        if not self.ledger.can_continue(session):
            raise SessionExhaustedError(
                f"Session {session.id} already holds "
                f"{self.ledger.max_questions} answers."
            )

    def check_can_complete(self, session: QuestionSession) -> None:
        if session.status != SessionStatus.active:
            raise SessionNotActiveError(
                f"Session {session.id} is {session.status.value}."
            )
        if not self.ledger.should_offer_recommendation(session):
            raise InsufficientAnswersError(
                f"Need at least {self.ledger.min_answers} answers, "
                f"got {session.answer_count}."
            )

    def next_turn(self, session: QuestionSession) -> Turn:
        if self.ledger.is_complete(session):
            return Turn.complete
        if self.ledger.should_offer_recommendation(session):
            return Turn.offer_recommendation
        return Turn.ask

    def complete(self, session: QuestionSession) -> None:
        self.check_can_complete(session)
        self.transition(session, SessionStatus.completed)

    def abandon(self, session: QuestionSession) -> None:
        self.transition(session, SessionStatus.abandoned)
