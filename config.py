# config.py
"""Configuration settings for the Ontoloom knowledge pipeline.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import structlog
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()

_FALSE_STRINGS = {"false", "0", "no", "off"}


class OntoloomSettings(BaseSettings):
    """Full configuration for the Ontoloom system."""

    # API and Model Configuration
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str = "nope"
    GENERATION_MODEL: str = "gemini-2.5-flash"

    OLLAMA_EMBED_URL: str = "http://127.0.0.1:11434"
    EMBEDDING_MODEL: str = "nomic-embed-text:latest"
    EXPECTED_EMBEDDING_DIM: int = 768
    EMBEDDING_DTYPE: str = "float32"

    # Neo4j Connection Settings
    NEO4J_URI: str = "bolt://localhost:7687"
    NEO4J_USER: str = "neo4j"
    NEO4J_PASSWORD: str = "ontoloom_password"
    NEO4J_DATABASE: str | None = "neo4j"

    # Neo4j Vector Index Configuration
    NEO4J_VECTOR_INDEX_NAME: str = "entityEmbeddings"
    NEO4J_VECTOR_NODE_LABEL: str = "Entity"
    NEO4J_VECTOR_PROPERTY_NAME: str = "text_embedding"
    NEO4J_VECTOR_DIMENSIONS: int = 768
    NEO4J_VECTOR_SIMILARITY_FUNCTION: str = "cosine"

    # Temperature Settings
    TEMPERATURE_PROPOSER: float = 0.2
    TEMPERATURE_VALIDATOR: float = 0.0
    TEMPERATURE_CRITIC: float = 0.3
    TEMPERATURE_QUERY: float = 0.0
    TEMPERATURE_DEFAULT: float = 0.4

    # LLM Call Settings
    MAX_GENERATION_TOKENS: int = 4096
    LLM_TOP_P: float = 0.8
    HTTPX_TIMEOUT: float = 120.0
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_DELAY_SECONDS: float = 1.0

    # Rate Limiting around the generation endpoint
    LLM_MIN_CALL_INTERVAL_SECONDS: float = 1.0
    LLM_RETRY_BASE_DELAY_SECONDS: float = 2.0
    LLM_MAX_RETRIES: int = 3
    LLM_RATE_LIMIT_MARKERS: list[str] = [
        "429",
        "quota",
        "rate limit",
        "resource_exhausted",
        "overloaded",
    ]

    # Pipeline
    ENABLE_CRITIC: bool = True
    CRITIC_CONTEXT_LIMIT: int = 20
    CRITIC_CONTEXT_PROMPT_LIMIT: int = 10
    RUN_DEADLINE_SECONDS: float | None = None
    STATS_LATENCY_SAMPLE_SIZE: int = 500

    # Natural-language queries
    QUERY_VECTOR_LIMIT: int = 3
    QUERY_KEYWORD_MATCH_LIMIT: int = 5
    QUERY_GENERAL_CONTEXT_LIMIT: int = 10

    # Caching
    PROPOSER_CACHE_SIZE: int = 256
    PROPOSER_CACHE_TTL_SECONDS: float | None = None
    EMBEDDING_CACHE_SIZE: int = 128
    SEMANTIC_SEARCH_CACHE_SIZE: int = 100

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="AGENT_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "ontoloom_run.log"
    LOG_DIR: str = "logs"
    ENABLE_RICH_LOGGING: bool = True

    @field_validator("ENABLE_CRITIC", mode="before")
    @classmethod
    def _parse_critic_flag(cls, value: object) -> bool:
        # Anything but an explicit false-ish string keeps the critic on.
        if isinstance(value, str):
            return value.strip().lower() not in _FALSE_STRINGS
        return bool(value)

    @field_validator("RUN_DEADLINE_SECONDS", "PROPOSER_CACHE_TTL_SECONDS", mode="before")
    @classmethod
    def _blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True, extra="ignore"
    )


settings = OntoloomSettings()
