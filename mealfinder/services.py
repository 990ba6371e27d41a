"""The operations behind the routes."""

import logging
from typing import Any

from mealfinder.errors import NotFoundError, ValidationError
from mealfinder.models import (
    Answer,
    GeneratedMealRecommendation,
    Location,
    Progress,
    Question,
    QuestionSession,
    Reaction,
    TimeOfDay,
    new_id,
)
from mealfinder.questions import QuestionGenerator
from mealfinder.recommendations import RecommendationOrchestrator
from mealfinder.repository import Repository
from mealfinder.sessions import SessionStateMachine, Turn


logger = logging.getLogger(__name__)


class SubmitResult:
    def __init__(
        self,
        *,
        answer: Answer,
        progress: Progress,
        turn: Turn,
        can_continue: bool,
        should_offer_recommendation: bool,
        is_complete: bool,
        recommendation: GeneratedMealRecommendation | None = None,
    ) -> None:
        self.answer = answer
        self.progress = progress
        self.turn = turn
        self.can_continue = can_continue
        self.should_offer_recommendation = should_offer_recommendation
        self.is_complete = is_complete
        self.recommendation = recommendation

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer.to_dict(),
            "progress": self.progress.to_dict(),
            "session": {
                "id": self.answer.session_id,
                "answered_questions": self.progress.current,
                "can_continue": self.can_continue,
                "should_offer_recommendation": self.should_offer_recommendation,
                "is_complete": self.is_complete,
            },
            "recommendation": (
                None if self.recommendation is None else self.recommendation.to_dict()
            ),
        }


def _machine(machine: SessionStateMachine | None) -> SessionStateMachine:
    return SessionStateMachine() if machine is None else machine


def parse_time_of_day(value: Any) -> TimeOfDay:
    try:
        return TimeOfDay.parse(value)
    except ValueError:
        raise ValidationError(
            f"time_of_day must be one of: {', '.join(TimeOfDay.values())}."
        ) from None


def parse_location(value: Any) -> Location | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("location must be an object.")
    try:
        location = Location.from_dict(value)
    except (KeyError, TypeError, ValueError):
        raise ValidationError("location needs numeric latitude and longitude.") from None
    # NaN fails both comparisons.
    if not (-90 <= location.latitude <= 90 and -180 <= location.longitude <= 180):
        raise ValidationError("location coordinates are out of range.")
    return location


async def create_session(
    user_id: str,
    time_of_day: Any,
    location: Any = None,
    *,
    repository: Repository,
) -> QuestionSession:
    session = QuestionSession(
        id=new_id(),
        user_id=user_id,
        time_of_day=parse_time_of_day(time_of_day),
        location=parse_location(location),
    )
    # The profile has to exist before a session can use it.
    await repository.get_profile(user_id)
    await repository.create_session(session)
    logger.info("Created session %s for %s", session.id, user_id)
    return session


async def get_session(
    session_id: str,
    user_id: str,
    *,
    repository: Repository,
) -> QuestionSession:
    return await repository.get_session(session_id, user_id)


async def next_question(
    session_id: str,
    user_id: str,
    *,
    repository: Repository,
    generator: QuestionGenerator,
    machine: SessionStateMachine | None = None,
) -> Question:
    machine = _machine(machine)
    session = await repository.get_session(session_id, user_id)
    machine.check_can_ask(session)

    pending = session.pending_question
    if pending is not None:
        return pending

    profile = await repository.get_profile(user_id)
    question = await generator.next_question(
        profile, session.answers, session.time_of_day, session.location
    )
    if session.question(question.id) is None:
        await repository.add_question(session.id, question)
    return question


def _validate_answer_input(
    question_id: Any, response: Any, response_time_ms: Any
) -> None:
    if not isinstance(question_id, str) or not question_id:
        raise ValidationError("question_id is required.")
    if not isinstance(response, bool):
        raise ValidationError("response must be true or false.")
    if (
        isinstance(response_time_ms, bool)
        or not isinstance(response_time_ms, int)
        or response_time_ms < 0
    ):
        raise ValidationError("response_time_ms must be a non-negative integer.")


async def _finish(
    session: QuestionSession,
    *,
    repository: Repository,
    recommender: RecommendationOrchestrator,
    machine: SessionStateMachine,
) -> GeneratedMealRecommendation:
    machine.check_can_complete(session)
    profile = await repository.get_profile(session.user_id)
    recommendation = await recommender.generate(
        profile,
        [(a, session.question(a.question_id)) for a in session.answers],
        session.time_of_day,
        session.location,
    )
    recommendation.session_id = session.id
    machine.complete(session)
    await repository.complete_session(session, recommendation)
    session.recommendation = recommendation
    logger.info(
        "Completed session %s with %s after %d answers",
        session.id,
        recommendation.name,
        session.answer_count,
    )
    return recommendation


async def submit_answer(
    session_id: str,
    user_id: str,
    question_id: Any,
    response: Any,
    response_time_ms: Any = 0,
    *,
    repository: Repository,
    recommender: RecommendationOrchestrator,
    machine: SessionStateMachine | None = None,
) -> SubmitResult:
    machine = _machine(machine)
    ledger = machine.ledger
    _validate_answer_input(question_id, response, response_time_ms)

    session = await repository.get_session(session_id, user_id)
    ledger.check_can_record(session, question_id)
    if session.question(question_id) is None:
        raise NotFoundError(
            f"Question {question_id} was not asked in session {session_id}."
        )

    answer = ledger.record_answer(session, question_id, response, response_time_ms)
    await repository.add_answer(session, answer)

    turn = machine.next_turn(session)
    recommendation = None
    if turn == Turn.complete:
        recommendation = await _finish(
            session, repository=repository, recommender=recommender, machine=machine
        )

    return SubmitResult(
        answer=answer,
        progress=ledger.progress(session),
        turn=turn,
        can_continue=ledger.can_continue(session),
        should_offer_recommendation=ledger.should_offer_recommendation(session),
        is_complete=ledger.is_complete(session),
        recommendation=recommendation,
    )


async def complete_session(
    session_id: str,
    user_id: str,
    *,
    repository: Repository,
    recommender: RecommendationOrchestrator,
    machine: SessionStateMachine | None = None,
) -> GeneratedMealRecommendation:
    """Finish a session early (or fetch the result of a finished one)."""
    machine = _machine(machine)
    session = await repository.get_session(session_id, user_id)
    if session.recommendation is not None:
        return session.recommendation
    return await _finish(
        session, repository=repository, recommender=recommender, machine=machine
    )


async def abandon_session(
    session_id: str,
    user_id: str,
    *,
    repository: Repository,
    machine: SessionStateMachine | None = None,
) -> QuestionSession:
    machine = _machine(machine)
    session = await repository.get_session(session_id, user_id)
    machine.abandon(session)
    await repository.update_session(session)
    logger.info("Abandoned session %s", session.id)
    return session


async def record_reaction(
    recommendation_id: str,
    user_id: str,
    reaction: Any,
    *,
    repository: Repository,
) -> GeneratedMealRecommendation:
    try:
        parsed = Reaction.parse(reaction)
    except ValueError:
        raise ValidationError(
            f"reaction must be one of: {', '.join(Reaction.values())}."
        ) from None
    recommendation = await repository.get_recommendation(recommendation_id, user_id)
    await repository.set_reaction(recommendation.id, parsed)
    recommendation.user_reaction = parsed
    return recommendation
