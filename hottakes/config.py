"""Runtime configuration for the hot takes service.

Values come from the process environment, optionally seeded from a `.env`
file via python-dotenv, and are validated into a pydantic model so the rest of
the code never touches `os.environ` directly.
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536
MAX_POST_LENGTH = 1500
MAX_MESSAGE_LENGTH = 2000
DEFAULT_TOP_K = 3


class Settings(BaseModel):
    """Validated service settings.

    Fields:
        openai_api_key: Key for the embeddings API; the OpenAI SDK also reads
            `OPENAI_API_KEY` itself when this is left unset.
        embedding_model: Embedding model identifier.
        database_url: Any SQLAlchemy URL; SQLite by default.
        top_k: Number of similar posts returned per submission.
        host / port / log_level: uvicorn serving options.
    """

    openai_api_key: Optional[str] = None
    embedding_model: str = EMBEDDING_MODEL
    database_url: str = "sqlite:///hottakes.db"
    top_k: int = Field(default=DEFAULT_TOP_K, ge=1, le=50)
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "info"


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings from the environment (and `.env` if present)."""
    load_dotenv(env_file)
    env = os.environ
    values = {
        "openai_api_key": env.get("OPENAI_API_KEY") or None,
        "embedding_model": env.get("OPENAI_EMBEDDING_MODEL"),
        "database_url": env.get("DATABASE_URL"),
        "top_k": env.get("HOTTAKES_TOP_K"),
        "host": env.get("HOTTAKES_HOST"),
        "port": env.get("HOTTAKES_PORT"),
        "log_level": env.get("HOTTAKES_LOG_LEVEL"),
    }
    # unset variables fall back to the model defaults
    return Settings(**{k: v for k, v in values.items() if v is not None})
