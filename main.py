import uvicorn

from app.config import Config, Env


CONFIG = Config()


if __name__ == "__main__":
    uvicorn.run(
        "app.app:app",
        host="0.0.0.0",
        port=8000,
        reload=CONFIG.env == Env.local,
        log_level=CONFIG.log_level.lower(),
    )
