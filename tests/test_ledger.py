import pytest

from conftest import make_session
from mealfinder.errors import DuplicateAnswerError, SessionNotActiveError
from mealfinder.ledger import AnswerLedger
from mealfinder.models import SessionStatus


def test_record_answer_appends_with_ordinal() -> None:
    session = make_session(2)
    answer = AnswerLedger().record_answer(session, "q-new", True, 950)

    assert session.answers[-1] is answer
    assert answer.question_index == 2
    assert answer.session_id == session.id
    assert answer.response is True
    assert answer.response_time_ms == 950
    assert session.current_question_index == 3


def test_duplicate_answer_is_rejected() -> None:
    session = make_session()
    ledger = AnswerLedger()
    ledger.record_answer(session, "q-1", True, 100)

    with pytest.raises(DuplicateAnswerError):
        ledger.record_answer(session, "q-1", False, 100)
    assert session.answer_count == 1


def test_eleventh_answer_is_rejected() -> None:
    session = make_session(10)
    with pytest.raises(SessionNotActiveError):
        AnswerLedger().record_answer(session, "q-11", True, 100)
    assert session.answer_count == 10


@pytest.mark.parametrize("status", (SessionStatus.completed, SessionStatus.abandoned))
def test_inactive_session_is_rejected(status: SessionStatus) -> None:
    session = make_session(1)
    session.status = status
    with pytest.raises(SessionNotActiveError):
        AnswerLedger().record_answer(session, "q-2", True, 100)


@pytest.mark.parametrize(
    "n,current,percentage",
    ((0, 0, 0), (1, 1, 10), (3, 3, 30), (7, 7, 70), (10, 10, 100)),
)
def test_progress(n: int, current: int, percentage: int) -> None:
    progress = AnswerLedger().progress(make_session(n))
    assert progress.to_dict() == {
        "current": current,
        "total": 10,
        "percentage": percentage,
    }


@pytest.mark.parametrize(
    "n,can_continue,offer,complete",
    (
        (0, True, False, False),
        (2, True, False, False),
        (3, True, True, False),
        (9, True, True, False),
        (10, False, True, True),
    ),
)
def test_predicates(n: int, can_continue: bool, offer: bool, complete: bool) -> None:
    ledger = AnswerLedger()
    session = make_session(n)
    assert ledger.can_continue(session) is can_continue
    assert ledger.should_offer_recommendation(session) is offer
    assert ledger.is_complete(session) is complete
