class MealFinderError(Exception):
    code = "meal_finder_error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.code.replace("_", " ").capitalize()

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class ValidationError(MealFinderError):
    code = "validation_error"
    status_code = 400


class UnauthorizedError(MealFinderError):
    code = "unauthorized"
    status_code = 401


class NotFoundError(MealFinderError):
    code = "not_found"
    status_code = 404


class DuplicateAnswerError(MealFinderError):
    code = "duplicate_answer"
    status_code = 409


class SessionNotActiveError(MealFinderError):
    code = "session_not_active"
    status_code = 409


class SessionExhaustedError(MealFinderError):
    code = "session_exhausted"
    status_code = 409


class InsufficientAnswersError(MealFinderError):
    code = "insufficient_answers"
    status_code = 422


class AIUnavailableError(MealFinderError):
    """The completion capability failed. Absorbed wherever a fallback exists."""

    code = "ai_unavailable"
    status_code = 503
