"""
agentchain Configuration

Environment-based configuration for the pipeline, its stores and its
external collaborators (LLM, embeddings, vector index, MCP tool catalog).
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    DEBUG: bool = Field(default=False, description="Enable debug mode")

    # Database
    DATABASE_URL: str = Field(
        default="",
        description="Database connection URL (overrides individual settings)",
    )
    POSTGRES_USER: str = Field(default="agentchain", description="PostgreSQL username")
    POSTGRES_PASSWORD: str = Field(default="password", description="PostgreSQL password")
    POSTGRES_HOST: str = Field(default="localhost", description="PostgreSQL host")
    POSTGRES_PORT: int = Field(default=5432, description="PostgreSQL port")
    POSTGRES_DB: str = Field(default="agentchain", description="PostgreSQL database name")
    DATABASE_POOL_SIZE: int = Field(default=10, description="Connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=20, description="Max pool overflow")
    DATABASE_POOL_TIMEOUT: int = Field(default=30, description="Pool checkout timeout in seconds")
    DATABASE_POOL_RECYCLE: int = Field(default=3600, description="Connection recycle time in seconds")

    # Qdrant
    QDRANT_URL: str = Field(default="http://localhost:6333", description="Qdrant server URL")
    QDRANT_API_KEY: str | None = Field(default=None, description="Qdrant API key")
    QDRANT_TIMEOUT: int = Field(default=30, description="Qdrant request timeout in seconds")
    QDRANT_COMPLEXITY_COLLECTION: str = Field(
        default="complexity_examples", description="Collection for complexity examples"
    )
    QDRANT_THOUGHT_COLLECTION: str = Field(
        default="thought_examples", description="Collection for thought examples"
    )
    QDRANT_PLAN_COLLECTION: str = Field(
        default="plan_examples", description="Collection for plan examples"
    )

    # Embeddings
    EMBEDDING_URL: str = Field(default="http://localhost:11434", description="Embedding service URL")
    EMBEDDING_MODEL: str = Field(default="nomic-embed-text", description="Embedding model name")
    EMBEDDING_DIMENSION: int = Field(default=768, description="Embedding vector dimensionality")
    EMBEDDING_TIMEOUT: int = Field(default=30, description="Embedding request timeout in seconds")

    # LLM
    LLM_BASE_URL: str = Field(default="https://api.openai.com/v1", description="LLM API base URL")
    LLM_API_KEY: str = Field(default="", description="LLM provider API key")
    LLM_MODEL: str = Field(default="gpt-4.1-mini", description="Default LLM model")
    LLM_TIMEOUT_SECONDS: int = Field(default=60, description="LLM request timeout")
    LLM_MAX_RETRIES: int = Field(default=3, description="LLM retry attempts")
    LLM_MAX_TOKENS: int = Field(default=2048, description="Default max tokens per completion")

    # MCP tool catalog
    MCP_SERVER_URL: str = Field(default="http://localhost:8000/mcp", description="MCP server URL")
    MCP_TIMEOUT: int = Field(default=30, description="MCP request timeout in seconds")

    # Complexity routing
    COMPLEXITY_STRATEGIES: list[str] = Field(
        default=["semantic", "keyword", "llm"],
        description="Enabled detection strategies in priority order",
    )
    COMPLEXITY_SIMILARITY_THRESHOLD: float = Field(
        default=0.85, ge=0.0, le=1.0, description="Minimum similarity for a semantic match"
    )

    # Few-shot guidance
    FEW_SHOT_TOP_K: int = Field(default=3, ge=0, description="Examples retrieved per stage")
    FEW_SHOT_MIN_SCORE: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Minimum similarity for few-shot examples"
    )

    # Critic
    CRITIC_APPROVE_THRESHOLD: float = Field(default=0.8, description="Score at or above which plans are approved")
    CRITIC_REVISE_THRESHOLD: float = Field(default=0.6, description="Score at or above which plans need revision")

    # Meta
    META_REPLAN_SCORE_FLOOR: float = Field(
        default=0.5, description="Critique score below which a replan is requested"
    )
    META_DEEPEN_CONFIDENCE_FLOOR: float = Field(
        default=0.35, description="Confidence below which reasoning is deepened"
    )

    # Executor
    EXECUTOR_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Tool calls per step before it fails")
    EXECUTOR_RETRY_DELAY: float = Field(
        default=0.5, ge=0.0, description="Seconds before the first retry; doubles per attempt"
    )

    # Pipeline
    PIPELINE_MAX_REPLANS: int = Field(default=3, ge=0, description="Maximum replans per request")
    PIPELINE_MAX_DEEPENINGS: int = Field(default=2, ge=0, description="Maximum reasoning deepenings per request")
    PIPELINE_META_CONFIDENCE_TRIGGER: float = Field(
        default=0.6, description="Confidence below which an approved plan still goes through meta review"
    )
    PIPELINE_EXECUTE_REJECTED_PLANS: bool = Field(
        default=False, description="Execute the last plan when the replan limit is reached"
    )

    @field_validator("COMPLEXITY_STRATEGIES")
    @classmethod
    def validate_strategies(cls, v: list[str]) -> list[str]:
        """Ensure only known strategies are configured."""
        allowed = {"semantic", "keyword", "llm"}
        unknown = [s for s in v if s not in allowed]
        if unknown:
            raise ValueError(f"Unknown complexity strategies: {unknown}")
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


# Global settings instance
settings = Settings()
