"""Pydantic-based configuration with environment variable support (CROUPIER_ prefix).

Nested sections are set with a double underscore, e.g.
``CROUPIER_RETRY__MAX_RETRIES=5`` or ``CROUPIER_CACHE__BACKEND=qdrant``.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from croupier.types import CachePolicy, QueryComplexity

QUERY_TIMEOUT_CEILING_SECONDS = 300.0


class ProviderSettings(BaseModel):
    """Declarative description of one LLM provider."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    name: str = ""
    kind: Literal["openai"] = "openai"
    model: str = "gpt-4o-mini"
    endpoint: Optional[str] = Field(default=None, description="Base URL (None = vendor default)")
    api_key: Optional[str] = None
    max_tokens: int = Field(default=2000, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    priority: float = Field(default=1.0, description="Higher is tried first")
    is_available: bool = True
    supported_complexities: List[QueryComplexity] = Field(
        default_factory=lambda: list(QueryComplexity)
    )
    timeout_seconds: float = Field(default=30.0, gt=0.0, description="Per-attempt timeout")

    def supports(self, complexity: QueryComplexity) -> bool:
        return complexity in self.supported_complexities


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=1, description="Attempts per provider before fallback")
    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (1-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


class QualityThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_syntax_score: float = Field(default=0.8, ge=0.0, le=1.0)
    min_semantic_score: float = Field(default=0.7, ge=0.0, le=1.0)
    min_overall_score: float = Field(default=0.75, ge=0.0, le=1.0)


class RankingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    semantic_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.25, ge=0.0, le=1.0)
    importance_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    entity_weight: float = Field(default=0.15, ge=0.0, le=1.0)
    top_k_tables: int = Field(default=50, ge=1)
    max_columns: int = Field(default=200, ge=0)
    score_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    relaxed_score_floor: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Floor for one relaxed retry after NoRelevantSchema (None = no retry)",
    )
    join_inclusion_ratio: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Tables scoring at least this fraction of the top score are joined",
    )
    max_join_tables: int = Field(default=4, ge=1)

    @model_validator(mode="after")
    def weights_sum_to_one(self) -> "RankingSettings":
        total = self.semantic_weight + self.keyword_weight + self.importance_weight + self.entity_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Ranking weights must sum to 1.0, got {total:.4f}")
        return self


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    backend: Literal["memory", "qdrant"] = "memory"
    collection_name: str = "croupier_cache"
    default_ttl_seconds: float = Field(default=3600.0, gt=0.0)
    policy: CachePolicy = CachePolicy.ABSOLUTE
    semantic_similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    max_cache_size: int = Field(default=1000, ge=1)
    revalidate_semantic_hits: bool = Field(
        default=True,
        description="Semantic hits must reference the same tables as the current selection",
    )
    embedding_cache_ttl_seconds: float = Field(default=86400.0, gt=0.0)
    embedding_cache_max_size: int = Field(default=10000, ge=0)

    # --- Qdrant backend ---
    qdrant_mode: Literal["memory", "docker", "cloud"] = "memory"
    qdrant_host: str = "localhost"
    qdrant_port: int = Field(default=6333, ge=1, le=65535)
    qdrant_url: Optional[str] = Field(default=None, description="Full Qdrant URL (overrides host:port)")
    qdrant_api_key: Optional[str] = None


class PerformanceSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_concurrent_queries: int = Field(default=100, ge=1)
    max_parallel_tasks: int = Field(default=4, ge=1)
    query_timeout_seconds: float = Field(default=120.0, gt=0.0)

    @field_validator("query_timeout_seconds")
    @classmethod
    def timeout_below_ceiling(cls, v: float) -> float:
        if v > QUERY_TIMEOUT_CEILING_SECONDS:
            raise ValueError(
                f"Query timeout may not exceed {QUERY_TIMEOUT_CEILING_SECONDS:.0f}s"
            )
        return v


class PromptSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_template_key: str = "sql_generation"
    max_prompt_chars: int = Field(default=24000, ge=1)
    mandatory_placeholders: List[str] = Field(
        default_factory=lambda: ["SCHEMA_DEFINITION", "USER_QUESTION"]
    )
    static_placeholders: Dict[str, str] = Field(
        default_factory=lambda: {
            "FRAUD_FILTERS": "IsSuspicious = 0 AND IsTestAccount = 0",
            "VALIDATION_CHECKLIST": (
                "- Only SELECT statements are allowed\n"
                "- Every referenced table appears in the schema above\n"
                "- Date filters use the resolved ranges\n"
                "- Test and suspicious accounts are excluded"
            ),
        }
    )
    max_examples: int = Field(default=3, ge=0)
    database_name: str = "DailyActionsDB"
    jurisdiction: Optional[str] = "UK"


class Settings(BaseSettings):
    """Central configuration for a Croupier instance."""

    model_config = SettingsConfigDict(
        env_prefix="CROUPIER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    providers: List[ProviderSettings] = Field(default_factory=list)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    quality: QualityThresholds = Field(default_factory=QualityThresholds)
    ranking: RankingSettings = Field(default_factory=RankingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    prompt: PromptSettings = Field(default_factory=PromptSettings)

    load_balancing: Literal["round_robin", "priority"] = Field(
        default="round_robin",
        description="Rotation among equal-priority providers across requests",
    )
    exhaustion_policy: Literal["fail", "best_effort"] = Field(
        default="fail",
        description="best_effort exposes the best rejected SQL on the failed result",
    )
    catalog_file: Optional[str] = Field(default=None, description="Path to JSON catalog file")

    @field_validator("providers")
    @classmethod
    def unique_provider_ids(cls, v: List[ProviderSettings]) -> List[ProviderSettings]:
        ids = [p.provider_id for p in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Provider ids must be unique")
        return v
