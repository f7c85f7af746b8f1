"""Data models shared across the pipeline: queries, entities, schema metadata,
relevance scores, join paths, provider attempts, cache entries and results."""

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"
    VERY_COMPLEX = "very_complex"

    @classmethod
    def from_score(cls, score: int) -> "QueryComplexity":
        if score <= 5:
            return cls.SIMPLE
        if score <= 10:
            return cls.MEDIUM
        if score <= 20:
            return cls.COMPLEX
        return cls.VERY_COMPLEX

    @property
    def rank(self) -> int:
        return list(QueryComplexity).index(self)


class QueryIntent(str, Enum):
    """Fixed intent taxonomy."""

    SELECT = "select"
    AGGREGATE = "aggregate"
    TREND = "trend"
    COMPARISON = "comparison"
    TOP_N = "top_n"
    DISTRIBUTION = "distribution"
    CORRELATION = "correlation"
    FORECAST = "forecast"
    ANOMALY = "anomaly"
    DRILL = "drill"


class EntityType(str, Enum):
    METRIC = "metric"
    TEMPORAL = "temporal"
    FINANCIAL = "financial"
    PLAYER = "player"
    GAME = "game"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"


class CachePolicy(str, Enum):
    ABSOLUTE = "absolute"
    SLIDING = "sliding"


class CacheHitKind(str, Enum):
    EXACT = "exact"
    SEMANTIC = "semantic"
    MISS = "miss"


class ErrorKind(str, Enum):
    EXTRACTION = "extraction"
    METADATA = "metadata"
    SCHEMA_RESOLUTION = "schema_resolution"
    PROMPT_VALIDATION = "prompt_validation"
    PROVIDER = "provider"
    QUALITY_GATE = "quality_gate"
    TIMEOUT = "timeout"


# --- Query & entities ---


class Query(BaseModel):
    """An incoming question. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    raw_text: str
    normalized_text: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    complexity: QueryComplexity = QueryComplexity.SIMPLE

    @property
    def today(self) -> date:
        """Reference date for temporal resolution."""
        return self.timestamp.date()

    def with_complexity(self, complexity: QueryComplexity) -> "Query":
        return self.model_copy(update={"complexity": complexity})


class TemporalRange(BaseModel):
    """Inclusive date range resolved from a temporal expression."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    granularity: str = "day"
    is_relative: bool = True

    def describe(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


class EntityMention(BaseModel):
    """A typed span of the question recognised by the extractor."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    text: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    confidence: float = 0.0
    normalized_value: str = ""
    subtype: Optional[str] = None
    synonyms: List[str] = Field(default_factory=list)
    related_tables: List[str] = Field(default_factory=list)
    related_columns: List[str] = Field(default_factory=list)
    temporal_range: Optional[TemporalRange] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "EntityMention") -> bool:
        return self.start < other.end and other.start < self.end


class Extraction(BaseModel):
    """Output of intent and entity extraction."""

    model_config = ConfigDict(frozen=True)

    intent: QueryIntent
    intent_scores: Dict[str, float] = Field(default_factory=dict)
    entities: List[EntityMention] = Field(default_factory=list)
    complexity: QueryComplexity = QueryComplexity.SIMPLE

    def of_type(self, entity_type: EntityType) -> List[EntityMention]:
        return [e for e in self.entities if e.entity_type == entity_type]


# --- Schema metadata (base record + optional semantic enrichment) ---


class SemanticEnrichment(BaseModel):
    """Semantic annotations for a table or column, keyed by the same identifier."""

    model_config = ConfigDict(frozen=True)

    subject: str
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    synonyms: List[str] = Field(default_factory=list)
    related_business_terms: List[str] = Field(default_factory=list)
    embedding: Optional[List[float]] = None


class TableInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    schema_name: str = "dbo"
    business_purpose: str = ""
    domain_classification: str = ""
    importance_score: float = 0.5
    is_active: bool = True

    @field_validator("importance_score", mode="before")
    @classmethod
    def clamp_importance_score(cls, v: float) -> float:
        return _clamp_unit(v)


class ColumnInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    table_name: str
    name: str
    data_type: str = ""
    business_meaning: str = ""
    importance_score: float = 0.5
    is_key: bool = False

    @field_validator("importance_score", mode="before")
    @classmethod
    def clamp_importance_score(cls, v: float) -> float:
        return _clamp_unit(v)


class TableMetadata(BaseModel):
    """A table record composed with its (optional) semantic enrichment."""

    model_config = ConfigDict(frozen=True)

    info: TableInfo
    semantic: Optional[SemanticEnrichment] = None

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def importance(self) -> float:
        return self.info.importance_score

    @property
    def embedding(self) -> Optional[List[float]]:
        return self.semantic.embedding if self.semantic else None

    @property
    def keywords(self) -> List[str]:
        if self.semantic is None:
            return []
        return list(self.semantic.keywords) + list(self.semantic.synonyms)

    def embedding_text(self) -> str:
        parts = [self.info.name, self.info.business_purpose, self.info.domain_classification]
        if self.semantic is not None:
            parts.append(self.semantic.description or "")
            parts.extend(self.semantic.keywords)
        return " ".join(p for p in parts if p)


class ColumnMetadata(BaseModel):
    """A column record composed with its (optional) semantic enrichment."""

    model_config = ConfigDict(frozen=True)

    info: ColumnInfo
    semantic: Optional[SemanticEnrichment] = None

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def table_name(self) -> str:
        return self.info.table_name

    @property
    def identifier(self) -> str:
        return f"{self.info.table_name}.{self.info.name}"

    @property
    def importance(self) -> float:
        return self.info.importance_score

    @property
    def embedding(self) -> Optional[List[float]]:
        return self.semantic.embedding if self.semantic else None

    @property
    def keywords(self) -> List[str]:
        if self.semantic is None:
            return []
        return list(self.semantic.keywords) + list(self.semantic.synonyms)

    def embedding_text(self) -> str:
        parts = [self.info.name, self.info.business_meaning]
        if self.semantic is not None:
            parts.append(self.semantic.description or "")
            parts.extend(self.semantic.synonyms)
        return " ".join(p for p in parts if p)


# --- Relevance ---


class SignalBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    semantic_similarity: float = 0.0
    keyword_overlap: float = 0.0
    importance: float = 0.0
    entity_bonus: float = 0.0


class RelevanceScore(BaseModel):
    """Composite relevance of one table or column, with its explanation."""

    model_config = ConfigDict(frozen=True)

    subject: str
    table_name: str
    column_name: Optional[str] = None
    score: float
    importance: float = 0.0
    signals: SignalBreakdown = Field(default_factory=SignalBreakdown)
    matched_keywords: List[str] = Field(default_factory=list)
    reasoning: str = ""

    @property
    def is_column(self) -> bool:
        return self.column_name is not None


class SchemaSelection(BaseModel):
    """Ranked tables and columns chosen for one request."""

    model_config = ConfigDict(frozen=True)

    tables: List[RelevanceScore] = Field(default_factory=list)
    columns: List[RelevanceScore] = Field(default_factory=list)
    degraded: bool = Field(
        default=False, description="True when ranking fell back to keyword-only scoring"
    )
    unmatched_terms: List[str] = Field(default_factory=list)

    def table_names(self) -> List[str]:
        return [t.table_name for t in self.tables]

    def columns_for(self, table_name: str) -> List[RelevanceScore]:
        return [c for c in self.columns if c.table_name == table_name]


class SchemaCatalog(BaseModel):
    """Read-only snapshot of the metadata collaborator for one session."""

    model_config = ConfigDict(frozen=True)

    tables: List[TableMetadata] = Field(default_factory=list)
    columns: Dict[str, List[ColumnMetadata]] = Field(default_factory=dict)
    relationships: List["JoinEdge"] = Field(default_factory=list)
    loaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def columns_of(self, table_name: str) -> List[ColumnMetadata]:
        return self.columns.get(table_name, [])


# --- Joins ---


class JoinEdge(BaseModel):
    """A declared relationship between two tables."""

    model_config = ConfigDict(frozen=True)

    left_table: str
    left_column: str
    right_table: str
    right_column: str
    join_type: str = "INNER"
    confidence: float = 1.0

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)

    @property
    def weight(self) -> float:
        return 1.0 - self.confidence

    @property
    def pair_key(self) -> str:
        a, b = sorted((self.left_table, self.right_table))
        return f"{a}|{b}"

    def touches(self, table: str) -> bool:
        return table in (self.left_table, self.right_table)

    def other(self, table: str) -> str:
        return self.right_table if table == self.left_table else self.left_table


class JoinStep(BaseModel):
    """One JOIN: ``joined_table`` is attached to the already-joined ``anchor_table``."""

    model_config = ConfigDict(frozen=True)

    edge: JoinEdge
    anchor_table: str
    joined_table: str

    def render(self) -> str:
        e = self.edge
        return (
            f"{e.join_type} JOIN {self.joined_table} ON "
            f"{e.left_table}.{e.left_column} = {e.right_table}.{e.right_column}"
        )


class JoinPath(BaseModel):
    """Acyclic join tree over the required tables, in traversal order."""

    model_config = ConfigDict(frozen=True)

    tables: List[str]
    steps: List[JoinStep] = Field(default_factory=list)
    total_score: float = 1.0

    @property
    def length(self) -> int:
        return len(self.steps)

    @property
    def edges(self) -> List[JoinEdge]:
        return [s.edge for s in self.steps]

    def render(self) -> str:
        if not self.tables:
            return ""
        lines = [f"FROM {self.tables[0]}"]
        lines.extend(step.render() for step in self.steps)
        return "\n".join(lines)


class JoinAmbiguity(BaseModel):
    """The required tables fall into disconnected groups."""

    model_config = ConfigDict(frozen=True)

    groups: List[List[str]]

    @property
    def message(self) -> str:
        rendered = " | ".join(", ".join(g) for g in self.groups)
        return f"No declared relationship connects table groups: {rendered}"


JoinResolution = Union[JoinPath, JoinAmbiguity]


# --- Providers ---


class LLMResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    tokens_used: int = 0
    latency_ms: float = 0.0
    provider_id: str = ""
    model: str = ""


class QualityScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    syntax_score: float = Field(default=0.0, ge=0.0, le=1.0)
    semantic_score: float = Field(default=0.0, ge=0.0, le=1.0)
    completeness_score: float = Field(default=0.0, ge=0.0, le=1.0)
    overall_score: float = Field(default=0.0, ge=0.0, le=1.0)
    issues: List[str] = Field(default_factory=list)


class ProviderAttempt(BaseModel):
    """Record of one call to one provider."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    attempt_number: int = Field(ge=1)
    started_at: datetime
    finished_at: datetime
    outcome: AttemptOutcome
    error: Optional[str] = None
    response_text: Optional[str] = None
    sql: Optional[str] = None
    quality: Optional[QualityScore] = None

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000.0


# --- Cache ---


class CachePayload(BaseModel):
    """The cached end-to-end result of a generation."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    sql: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    provider_id: Optional[str] = None
    quality: Optional[QualityScore] = None
    schema_selection: SchemaSelection = Field(default_factory=SchemaSelection)


class CacheEntry(BaseModel):
    """A single entry in the semantic cache."""

    fingerprint: str
    vector: List[float] = Field(default_factory=list)
    normalized_question: str = ""
    payload: CachePayload
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_accessed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ttl_seconds: float = Field(default=3600.0, gt=0.0)
    policy: CachePolicy = CachePolicy.ABSOLUTE
    hit_count: int = Field(default=0, ge=0)

    @property
    def expires_at(self) -> datetime:
        anchor = self.last_accessed_at if self.policy == CachePolicy.SLIDING else self.created_at
        return anchor + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def touched(self, now: datetime) -> "CacheEntry":
        return self.model_copy(
            update={"hit_count": self.hit_count + 1, "last_accessed_at": now}
        )


class ScoredEntry(BaseModel):
    """A cache entry returned by a similarity search."""

    entry: CacheEntry
    score: float


class CacheResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: CacheHitKind = CacheHitKind.MISS
    entry: Optional[CacheEntry] = None
    similarity: float = 0.0

    @property
    def hit(self) -> bool:
        return self.kind != CacheHitKind.MISS and self.entry is not None


# --- Collaborator records ---


class BusinessRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_key: str
    rule_name: str
    rule_content: str
    rule_category: str
    intent_type: Optional[str] = None
    priority: int = 1
    is_active: bool = True
    condition: Optional[str] = None
    action: Optional[str] = None


class ComplianceRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_key: str
    rule_name: str
    rule_content: str
    compliance_type: str
    jurisdiction: Optional[str] = None
    is_active: bool = True


class ExampleQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    example_key: str
    natural_language_query: str
    sql_query: str
    intent_type: QueryIntent = QueryIntent.SELECT
    complexity: QueryComplexity = QueryComplexity.SIMPLE
    is_validated: bool = False
    is_active: bool = True


class BusinessDomain(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    key_concepts: List[str] = Field(default_factory=list)


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    template_key: str
    content: str
    version: int = 1
    mandatory_placeholders: List[str] = Field(default_factory=list)
    is_active: bool = True


class DomainTerm(BaseModel):
    """Static definition of a domain term used for entity recognition."""

    model_config = ConfigDict(frozen=True)

    key: str
    canonical: str
    entity_type: EntityType
    definition: str = ""
    synonyms: List[str] = Field(default_factory=list)
    related_tables: List[str] = Field(default_factory=list)
    related_columns: List[str] = Field(default_factory=list)
    formula: Optional[str] = None


# --- Results ---


class AssembledPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    template_key: str
    text: str
    resolved: List[str] = Field(default_factory=list)
    empty_optional: List[str] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.text)


class BusinessContext(BaseModel):
    """Request-level context threaded into prompt resolution."""

    model_config = ConfigDict(frozen=True)

    entities: List[EntityMention] = Field(default_factory=list)
    join_path: Optional[JoinPath] = None
    ambiguities: List[str] = Field(default_factory=list)
    jurisdiction: Optional[str] = None
    additional: Dict[str, str] = Field(default_factory=dict)


class GenerationResult(BaseModel):
    """User-visible outcome of one pipeline run, successful or not."""

    success: bool
    sql: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    query: Optional[Query] = None
    intent: Optional[QueryIntent] = None
    entities: List[EntityMention] = Field(default_factory=list)
    schema_selection: Optional[SchemaSelection] = None
    join_path: Optional[JoinPath] = None
    ambiguities: List[str] = Field(default_factory=list)
    prompt: Optional[str] = None
    provider_id: Optional[str] = None
    quality: Optional[QualityScore] = None
    attempts: List[ProviderAttempt] = Field(default_factory=list)
    best_rejected: Optional[ProviderAttempt] = None
    cache_kind: CacheHitKind = CacheHitKind.MISS
    fingerprint: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    latency_ms: float = 0.0


SchemaCatalog.model_rebuild()
