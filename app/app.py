import contextlib
import functools
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from rich.logging import RichHandler
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from app import config
from mealfinder import services
from mealfinder.errors import MealFinderError, UnauthorizedError, ValidationError
from mealfinder.ledger import AnswerLedger
from mealfinder.llm_service import LLMService, TextCompleter
from mealfinder.models import QuestionSession
from mealfinder.questions import QuestionGenerator
from mealfinder.recommendations import (
    RecommendationOrchestrator,
    evaluate_fit,
    nutritional_score,
)
from mealfinder.repository import MemoryRepository, Repository, SQLRepository
from mealfinder.sessions import SessionStateMachine


logger = logging.getLogger(__name__)


USER_HEADER = "x-user-id"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def aJSONResponse(route: Callable[..., Awaitable[Any | tuple[Any, int]]]):
    """Wrap a route's result, or its failure, in the response envelope."""

    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> JSONResponse:
        try:
            resp = await route(*args, **kwargs)
        except MealFinderError as e:
            logger.info("%s: %s", e.code, e.message)
            return JSONResponse(e.to_dict(), status_code=e.status_code)
        except Exception:
            logger.exception("Unhandled error")
            return JSONResponse(
                {"error": "internal_error", "message": "Internal server error."},
                status_code=500,
            )
        if not isinstance(resp, tuple):
            data, code = resp, 200
        else:
            data, code = resp
        return JSONResponse({"success": True, "data": data}, status_code=code)

    return wrapper


def user_id(request: Request) -> str:
    user = request.headers.get(USER_HEADER, "").strip()
    if not user:
        raise UnauthorizedError(f"Missing {USER_HEADER} header.")
    return user


async def json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Body must be valid JSON.") from None
    if not isinstance(body, dict):
        raise ValidationError("Body must be a JSON object.")
    return body


def session_payload(request: Request, session: QuestionSession) -> dict[str, Any]:
    ledger: AnswerLedger = request.app.state.machine.ledger
    data = session.to_dict()
    data["progress"] = ledger.progress(session).to_dict()
    data["recommendation"] = (
        None if session.recommendation is None else session.recommendation.to_dict()
    )
    return data


@aJSONResponse
async def health(request: Request) -> dict[str, str]:
    return {"status": "ok"}


@aJSONResponse
async def create_session(request: Request) -> tuple[dict[str, Any], int]:
    user = user_id(request)
    body = await json_body(request)
    if "time_of_day" not in body:
        raise ValidationError("Missing required parameter: time_of_day")
    session = await services.create_session(
        user,
        body["time_of_day"],
        body.get("location"),
        repository=request.app.state.repo,
    )
    return session_payload(request, session), 201


@aJSONResponse
async def session_detail(request: Request) -> dict[str, Any]:
    session = await services.get_session(
        request.path_params["session_id"],
        user_id(request),
        repository=request.app.state.repo,
    )
    return session_payload(request, session)


@aJSONResponse
async def next_question(request: Request) -> dict[str, Any]:
    user = user_id(request)
    session_id = request.path_params["session_id"]
    question = await services.next_question(
        session_id,
        user,
        repository=request.app.state.repo,
        generator=request.app.state.generator,
        machine=request.app.state.machine,
    )
    session = await services.get_session(
        session_id, user, repository=request.app.state.repo
    )
    return {
        "question": question.to_dict(),
        "progress": request.app.state.machine.ledger.progress(session).to_dict(),
    }


@aJSONResponse
async def submit_answer(request: Request) -> tuple[dict[str, Any], int]:
    user = user_id(request)
    body = await json_body(request)
    result = await services.submit_answer(
        request.path_params["session_id"],
        user,
        body.get("question_id"),
        body.get("response"),
        body.get("response_time_ms", 0),
        repository=request.app.state.repo,
        recommender=request.app.state.recommender,
        machine=request.app.state.machine,
    )
    return result.to_dict(), 201


@aJSONResponse
async def complete_session(request: Request) -> dict[str, Any]:
    user = user_id(request)
    repo: Repository = request.app.state.repo
    recommendation = await services.complete_session(
        request.path_params["session_id"],
        user,
        repository=repo,
        recommender=request.app.state.recommender,
        machine=request.app.state.machine,
    )
    profile = await repo.get_profile(user)
    return {
        "recommendation": recommendation.to_dict(),
        "nutrition": nutritional_score(recommendation),
        "fit": evaluate_fit(recommendation, profile),
    }


@aJSONResponse
async def abandon_session(request: Request) -> dict[str, Any]:
    session = await services.abandon_session(
        request.path_params["session_id"],
        user_id(request),
        repository=request.app.state.repo,
        machine=request.app.state.machine,
    )
    return session_payload(request, session)


@aJSONResponse
async def record_reaction(request: Request) -> dict[str, Any]:
    user = user_id(request)
    body = await json_body(request)
    recommendation = await services.record_reaction(
        request.path_params["recommendation_id"],
        user,
        body.get("reaction"),
        repository=request.app.state.repo,
    )
    return recommendation.to_dict()


def repository_from_url(url: str) -> Repository:
    if url.startswith("memory://"):
        return MemoryRepository()
    return SQLRepository.from_url(url)


def create_app(
    conf: config.Config | None = None,
    *,
    repository: Repository | None = None,
    llm: TextCompleter | None = None,
) -> Starlette:
    conf = config.Config() if conf is None else conf
    configure_logging(conf.log_level)

    repository = repository_from_url(conf.db_url) if repository is None else repository
    llm = (
        LLMService(
            api_key=conf.openai_api_key,
            model=conf.core_model,
            timeout=conf.ai_timeout_seconds,
        )
        if llm is None
        else llm
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await repository.connect()
        yield
        await repository.disconnect()
        if isinstance(llm, LLMService):
            await llm.close()

    app = Starlette(
        debug=conf.env == config.Env.local,
        routes=[
            Route("/health", health),
            Route("/api/sessions", create_session, methods=["POST"]),
            Route("/api/sessions/{session_id}", session_detail),
            Route("/api/sessions/{session_id}/questions/next", next_question),
            Route(
                "/api/sessions/{session_id}/answers", submit_answer, methods=["POST"]
            ),
            Route(
                "/api/sessions/{session_id}/complete",
                complete_session,
                methods=["POST"],
            ),
            Route(
                "/api/sessions/{session_id}/abandon",
                abandon_session,
                methods=["POST"],
            ),
            Route(
                "/api/recommendations/{recommendation_id}/reaction",
                record_reaction,
                methods=["POST"],
            ),
        ],
        lifespan=lifespan,
    )

    app.state.repo = repository
    app.state.machine = SessionStateMachine()
    app.state.generator = QuestionGenerator(
        llm,
        temperature=conf.question_temperature,
        max_tokens=conf.question_max_tokens,
    )
    app.state.recommender = RecommendationOrchestrator(
        llm,
        temperature=conf.recommendation_temperature,
        max_tokens=conf.recommendation_max_tokens,
    )
    return app


app = create_app()
