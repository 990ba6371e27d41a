import copy
from datetime import datetime
import json
import sqlite3
from typing import Any, Iterable, Protocol

from databases import Database
from databases.interfaces import Record

from mealfinder.errors import (
    DuplicateAnswerError,
    NotFoundError,
    SessionNotActiveError,
)
from mealfinder.models import (
    Answer,
    BudgetRange,
    CuisineGenre,
    GeneratedMealRecommendation,
    Location,
    MealSource,
    Question,
    QuestionCategory,
    QuestionSession,
    Reaction,
    SessionStatus,
    SpiceLevel,
    TimeOfDay,
    UserProfile,
)


class Repository(Protocol):
    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def get_profile(self, user_id: str) -> UserProfile:
        ...

    async def save_profile(self, profile: UserProfile) -> None:
        ...

    async def create_session(self, session: QuestionSession) -> None:
        ...

    async def get_session(self, session_id: str, user_id: str) -> QuestionSession:
        ...

    async def add_question(self, session_id: str, question: Question) -> None:
        ...

    async def add_answer(self, session: QuestionSession, answer: Answer) -> None:
        ...

    async def update_session(self, session: QuestionSession) -> None:
        ...

    async def complete_session(
        self,
        session: QuestionSession,
        recommendation: GeneratedMealRecommendation,
    ) -> None:
        ...

    async def get_recommendation(
        self, recommendation_id: str, user_id: str
    ) -> GeneratedMealRecommendation:
        ...

    async def set_reaction(self, recommendation_id: str, reaction: Reaction) -> None:
        ...


class MemoryRepository:
    """Process-local store. Hands out copies so callers never share state."""

    def __init__(self, profiles: Iterable[UserProfile] = ()) -> None:
        self.profiles: dict[str, UserProfile] = {p.id: p for p in profiles}
        self.sessions: dict[str, QuestionSession] = {}
        self.recommendations: dict[str, GeneratedMealRecommendation] = {}

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def get_profile(self, user_id: str) -> UserProfile:
        try:
            return copy.deepcopy(self.profiles[user_id])
        except KeyError:
            raise NotFoundError(f"User profile {user_id} not found.") from None

    async def save_profile(self, profile: UserProfile) -> None:
        self.profiles[profile.id] = copy.deepcopy(profile)

    def _session(self, session_id: str, user_id: str) -> QuestionSession:
        session = self.sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError(f"Session {session_id} not found.")
        return session

    async def create_session(self, session: QuestionSession) -> None:
        self.sessions[session.id] = copy.deepcopy(session)

    async def get_session(self, session_id: str, user_id: str) -> QuestionSession:
        return copy.deepcopy(self._session(session_id, user_id))

    async def add_question(self, session_id: str, question: Question) -> None:
        self.sessions[session_id].questions.append(copy.deepcopy(question))

    async def add_answer(self, session: QuestionSession, answer: Answer) -> None:
        stored = self.sessions[session.id]
        if stored.status != SessionStatus.active:
            raise SessionNotActiveError(
                f"Session {session.id} is {stored.status.value}."
            )
        if answer.question_id in stored.answered_question_ids:
            raise DuplicateAnswerError(
                f"Question {answer.question_id} already answered in session {session.id}."
            )
        # Same guard as the unique (session_id, question_index) index.
        if answer.question_index != stored.answer_count:
            raise DuplicateAnswerError(
                f"Answer {answer.question_index} already recorded in session {session.id}."
            )
        stored.answers.append(copy.deepcopy(answer))
        stored.current_question_index = session.current_question_index

    async def update_session(self, session: QuestionSession) -> None:
        stored = self.sessions[session.id]
        if stored.status != SessionStatus.active:
            raise SessionNotActiveError(
                f"Session {session.id} is {stored.status.value}."
            )
        stored.status = session.status
        stored.completed_at = session.completed_at
        stored.current_question_index = session.current_question_index

    async def complete_session(
        self,
        session: QuestionSession,
        recommendation: GeneratedMealRecommendation,
    ) -> None:
        await self.update_session(session)
        stored = copy.deepcopy(recommendation)
        self.recommendations[recommendation.id] = stored
        self.sessions[session.id].recommendation = stored

    async def get_recommendation(
        self, recommendation_id: str, user_id: str
    ) -> GeneratedMealRecommendation:
        recommendation = self.recommendations.get(recommendation_id)
        if recommendation is None or recommendation.session_id is None:
            raise NotFoundError(f"Recommendation {recommendation_id} not found.")
        session = self.sessions.get(recommendation.session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError(f"Recommendation {recommendation_id} not found.")
        return copy.deepcopy(recommendation)

    async def set_reaction(self, recommendation_id: str, reaction: Reaction) -> None:
        self.recommendations[recommendation_id].user_reaction = reaction
        session_id = self.recommendations[recommendation_id].session_id
        if session_id is not None and session_id in self.sessions:
            self.sessions[session_id].recommendation = self.recommendations[
                recommendation_id
            ]


CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS Profiles (
        id VARCHAR(64) PRIMARY KEY,
        preferred_genres VARCHAR(512),
        allergies VARCHAR(1024),
        spice_preference VARCHAR(16),
        budget_range VARCHAR(16)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Sessions (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        time_of_day VARCHAR(16) NOT NULL,
        location VARCHAR(512),
        current_question_index INTEGER NOT NULL,
        status VARCHAR(16) NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        completed_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Questions (
        id VARCHAR(64) NOT NULL,
        session_id VARCHAR(64) NOT NULL,
        text VARCHAR(1024) NOT NULL,
        category VARCHAR(16) NOT NULL,
        priority INTEGER NOT NULL,
        is_system_question BOOLEAN NOT NULL,
        question_index INTEGER NOT NULL,
        PRIMARY KEY (session_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Answers (
        id VARCHAR(64) PRIMARY KEY,
        session_id VARCHAR(64) NOT NULL,
        question_id VARCHAR(64) NOT NULL,
        response BOOLEAN NOT NULL,
        response_time_ms INTEGER NOT NULL,
        question_index INTEGER NOT NULL,
        answered_at VARCHAR(40) NOT NULL,
        UNIQUE (session_id, question_id),
        UNIQUE (session_id, question_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Recommendations (
        id VARCHAR(64) PRIMARY KEY,
        session_id VARCHAR(64) NOT NULL UNIQUE,
        name VARCHAR(256) NOT NULL,
        description VARCHAR(1024) NOT NULL,
        cuisine_genre VARCHAR(16) NOT NULL,
        spice_level VARCHAR(16) NOT NULL,
        estimated_price INTEGER NOT NULL,
        cooking_time_minutes INTEGER NOT NULL,
        ingredients VARCHAR(3000) NOT NULL,
        instructions VARCHAR(3000) NOT NULL,
        meal_source VARCHAR(16) NOT NULL,
        confidence_score REAL NOT NULL,
        reasoning VARCHAR(3000) NOT NULL,
        user_reaction VARCHAR(16),
        created_at VARCHAR(40) NOT NULL
    )
    """,
)


UPSERT_PROFILE = """
INSERT INTO Profiles(id, preferred_genres, allergies, spice_preference, budget_range)
VALUES (:id, :preferred_genres, :allergies, :spice_preference, :budget_range)
ON CONFLICT(id) DO UPDATE SET
    preferred_genres = excluded.preferred_genres,
    allergies = excluded.allergies,
    spice_preference = excluded.spice_preference,
    budget_range = excluded.budget_range
"""

GET_PROFILE = "SELECT * FROM Profiles WHERE id = :id"

CREATE_SESSION = """
INSERT INTO Sessions(
    id, user_id, time_of_day, location, current_question_index, status,
    created_at, completed_at
)
VALUES (
    :id, :user_id, :time_of_day, :location, :current_question_index, :status,
    :created_at, :completed_at
)
"""

GET_SESSION = "SELECT * FROM Sessions WHERE id = :id AND user_id = :user_id"

UPDATE_SESSION = """
UPDATE Sessions
SET status = :status,
    completed_at = :completed_at,
    current_question_index = :current_question_index
WHERE id = :id AND status = 'active'
"""

GET_SESSION_STATUS = "SELECT status FROM Sessions WHERE id = :id"

SET_QUESTION_INDEX = """
UPDATE Sessions SET current_question_index = :current_question_index WHERE id = :id
"""

CREATE_QUESTION = """
INSERT INTO Questions(
    id, session_id, text, category, priority, is_system_question, question_index
)
VALUES (
    :id, :session_id, :text, :category, :priority, :is_system_question,
    :question_index
)
"""

LIST_QUESTIONS = """
SELECT * FROM Questions WHERE session_id = :session_id ORDER BY question_index
"""

CREATE_ANSWER = """
INSERT INTO Answers(
    id, session_id, question_id, response, response_time_ms, question_index,
    answered_at
)
VALUES (
    :id, :session_id, :question_id, :response, :response_time_ms,
    :question_index, :answered_at
)
"""

LIST_ANSWERS = """
SELECT * FROM Answers WHERE session_id = :session_id ORDER BY question_index
"""

CREATE_RECOMMENDATION = """
INSERT INTO Recommendations(
    id, session_id, name, description, cuisine_genre, spice_level,
    estimated_price, cooking_time_minutes, ingredients, instructions,
    meal_source, confidence_score, reasoning, user_reaction, created_at
)
VALUES (
    :id, :session_id, :name, :description, :cuisine_genre, :spice_level,
    :estimated_price, :cooking_time_minutes, :ingredients, :instructions,
    :meal_source, :confidence_score, :reasoning, :user_reaction, :created_at
)
"""

GET_SESSION_RECOMMENDATION = """
SELECT * FROM Recommendations WHERE session_id = :session_id
"""

GET_RECOMMENDATION = """
SELECT r.* FROM Recommendations r
JOIN Sessions s ON s.id = r.session_id
WHERE r.id = :id AND s.user_id = :user_id
"""

SET_REACTION = """
UPDATE Recommendations SET user_reaction = :user_reaction WHERE id = :id
"""


def _optional_datetime(value: str | None) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def _optional_isoformat(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def profile_from_record(r: Record) -> UserProfile:
    return UserProfile(
        id=r["id"],
        preferred_genres={CuisineGenre.parse(g) for g in json.loads(r["preferred_genres"])},
        allergies=set(json.loads(r["allergies"])),
        spice_preference=SpiceLevel.parse(r["spice_preference"]),
        budget_range=BudgetRange.parse(r["budget_range"]),
    )


def question_from_record(r: Record) -> Question:
    return Question(
        id=r["id"],
        text=r["text"],
        category=QuestionCategory.parse(r["category"]),
        priority=r["priority"],
        is_system_question=bool(r["is_system_question"]),
        question_index=r["question_index"],
    )


def answer_from_record(r: Record) -> Answer:
    return Answer(
        id=r["id"],
        session_id=r["session_id"],
        question_id=r["question_id"],
        response=bool(r["response"]),
        response_time_ms=r["response_time_ms"],
        question_index=r["question_index"],
        answered_at=datetime.fromisoformat(r["answered_at"]),
    )


def recommendation_from_record(r: Record) -> GeneratedMealRecommendation:
    return GeneratedMealRecommendation(
        id=r["id"],
        session_id=r["session_id"],
        name=r["name"],
        description=r["description"],
        cuisine_genre=CuisineGenre.parse(r["cuisine_genre"]),
        spice_level=SpiceLevel.parse(r["spice_level"]),
        estimated_price=r["estimated_price"],
        cooking_time_minutes=r["cooking_time_minutes"],
        ingredients=json.loads(r["ingredients"]),
        instructions=json.loads(r["instructions"]),
        meal_source=MealSource.parse(r["meal_source"]),
        confidence_score=r["confidence_score"],
        reasoning=r["reasoning"],
        user_reaction=(
            None if r["user_reaction"] is None else Reaction.parse(r["user_reaction"])
        ),
        created_at=datetime.fromisoformat(r["created_at"]),
    )


def recommendation_values(
    recommendation: GeneratedMealRecommendation,
) -> dict[str, Any]:
    return {
        "id": recommendation.id,
        "session_id": recommendation.session_id,
        "name": recommendation.name,
        "description": recommendation.description,
        "cuisine_genre": recommendation.cuisine_genre.value,
        "spice_level": recommendation.spice_level.value,
        "estimated_price": recommendation.estimated_price,
        "cooking_time_minutes": recommendation.cooking_time_minutes,
        "ingredients": json.dumps(recommendation.ingredients, ensure_ascii=False),
        "instructions": json.dumps(recommendation.instructions, ensure_ascii=False),
        "meal_source": recommendation.meal_source.value,
        "confidence_score": recommendation.confidence_score,
        "reasoning": recommendation.reasoning,
        "user_reaction": (
            None
            if recommendation.user_reaction is None
            else recommendation.user_reaction.value
        ),
        "created_at": recommendation.created_at.isoformat(),
    }


class SQLRepository:
    """Sessions, answers and recommendations in a relational store."""

    def __init__(self, db: Database) -> None:
        self.db = db

    @classmethod
    def from_url(cls, url: str) -> "SQLRepository":
        return cls(Database(url))

    async def connect(self) -> None:
        await self.db.connect()
        await self.create_tables()

    async def disconnect(self) -> None:
        await self.db.disconnect()

    async def create_tables(self) -> None:
        for query in CREATE_TABLES:
            await self.db.execute(query=query)  # pyright: ignore[reportUnknownMemberType]

    async def get_profile(self, user_id: str) -> UserProfile:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_PROFILE, values={"id": user_id}
        )
        if result is None:
            raise NotFoundError(f"User profile {user_id} not found.")
        return profile_from_record(result)

    async def save_profile(self, profile: UserProfile) -> None:
        values = profile.to_dict()
        values["preferred_genres"] = json.dumps(values["preferred_genres"])
        values["allergies"] = json.dumps(values["allergies"], ensure_ascii=False)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPSERT_PROFILE, values=values
        )

    async def create_session(self, session: QuestionSession) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CREATE_SESSION,
            values={
                "id": session.id,
                "user_id": session.user_id,
                "time_of_day": session.time_of_day.value,
                "location": (
                    None
                    if session.location is None
                    else json.dumps(session.location.to_dict(), ensure_ascii=False)
                ),
                "current_question_index": session.current_question_index,
                "status": session.status.value,
                "created_at": session.created_at.isoformat(),
                "completed_at": _optional_isoformat(session.completed_at),
            },
        )

    async def get_session(self, session_id: str, user_id: str) -> QuestionSession:
        r = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_SESSION, values={"id": session_id, "user_id": user_id}
        )
        if r is None:
            raise NotFoundError(f"Session {session_id} not found.")

        questions = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_QUESTIONS, values={"session_id": session_id}
        )
        answers = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_ANSWERS, values={"session_id": session_id}
        )
        recommendation = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_SESSION_RECOMMENDATION, values={"session_id": session_id}
        )

        return QuestionSession(
            id=r["id"],
            user_id=r["user_id"],
            time_of_day=TimeOfDay.parse(r["time_of_day"]),
            location=(
                None
                if r["location"] is None
                else Location.from_dict(json.loads(r["location"]))
            ),
            current_question_index=r["current_question_index"],
            status=SessionStatus.parse(r["status"]),
            created_at=datetime.fromisoformat(r["created_at"]),
            completed_at=_optional_datetime(r["completed_at"]),
            answers=[answer_from_record(a) for a in answers],
            questions=[question_from_record(q) for q in questions],
            recommendation=(
                None
                if recommendation is None
                else recommendation_from_record(recommendation)
            ),
        )

    async def add_question(self, session_id: str, question: Question) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CREATE_QUESTION,
            values={
                "id": question.id,
                "session_id": session_id,
                "text": question.text,
                "category": question.category.value,
                "priority": question.priority,
                "is_system_question": question.is_system_question,
                "question_index": question.question_index,
            },
        )

    async def _check_active(self, session_id: str) -> None:
        r = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_SESSION_STATUS, values={"id": session_id}
        )
        if r is None or r["status"] != SessionStatus.active.value:
            raise SessionNotActiveError(f"Session {session_id} is not active.")

    async def add_answer(self, session: QuestionSession, answer: Answer) -> None:
        # Write first: the unique indexes on Answers catch concurrent answers.
        async with self.db.transaction():
            try:
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    CREATE_ANSWER,
                    values={
                        "id": answer.id,
                        "session_id": answer.session_id,
                        "question_id": answer.question_id,
                        "response": answer.response,
                        "response_time_ms": answer.response_time_ms,
                        "question_index": answer.question_index,
                        "answered_at": answer.answered_at.isoformat(),
                    },
                )
            except sqlite3.IntegrityError:
                raise DuplicateAnswerError(
                    f"Question {answer.question_id} or answer "
                    f"{answer.question_index} already recorded in session {session.id}."
                ) from None
            await self._check_active(session.id)
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                SET_QUESTION_INDEX,
                values={
                    "id": session.id,
                    "current_question_index": session.current_question_index,
                },
            )

    async def _update_status(self, session: QuestionSession) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPDATE_SESSION,
            values={
                "id": session.id,
                "status": session.status.value,
                "completed_at": _optional_isoformat(session.completed_at),
                "current_question_index": session.current_question_index,
            },
        )
        r = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_SESSION_STATUS, values={"id": session.id}
        )
        if r is None or r["status"] != session.status.value:
            raise SessionNotActiveError(f"Session {session.id} is no longer active.")

    async def update_session(self, session: QuestionSession) -> None:
        async with self.db.transaction():
            await self._update_status(session)

    async def complete_session(
        self,
        session: QuestionSession,
        recommendation: GeneratedMealRecommendation,
    ) -> None:
        async with self.db.transaction():
            await self._update_status(session)
            try:
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    CREATE_RECOMMENDATION, values=recommendation_values(recommendation)
                )
            except sqlite3.IntegrityError:
                raise SessionNotActiveError(
                    f"Session {session.id} is already completed."
                ) from None

    async def get_recommendation(
        self, recommendation_id: str, user_id: str
    ) -> GeneratedMealRecommendation:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_RECOMMENDATION, values={"id": recommendation_id, "user_id": user_id}
        )
        if result is None:
            raise NotFoundError(f"Recommendation {recommendation_id} not found.")
        return recommendation_from_record(result)

    async def set_reaction(self, recommendation_id: str, reaction: Reaction) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            SET_REACTION, values={"id": recommendation_id, "user_reaction": reaction.value}
        )
