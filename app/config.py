from enum import Enum

from pydantic_settings import BaseSettings


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    env: Env = Env.local
    log_level: str = "INFO"
    # "memory://" keeps everything in process.
    db_url: str = "sqlite+aiosqlite:///mealfinder.db"
    openai_api_key: str | None = None
    core_model: str = "gpt-4"
    ai_timeout_seconds: float = 15
    question_temperature: float = 0.7
    question_max_tokens: int = 150
    recommendation_temperature: float = 0.7
    recommendation_max_tokens: int = 1000
