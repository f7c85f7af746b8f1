"""Core Croupier class wiring the NL-to-SQL pipeline together."""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from croupier.backends import InMemoryCacheBackend, get_qdrant_backend
from croupier.cache import SemanticCache
from croupier.config import Settings
from croupier.embeddings.service import EmbeddingService
from croupier.exceptions import (
    EmbeddingUnavailable,
    ExtractionError,
    MetadataUnavailable,
    PromptValidationError,
    ProviderError,
    ProvidersExhausted,
    SchemaResolutionError,
    TemplateError,
)
from croupier.extraction import EntityIntentExtractor, estimate_complexity_from_text
from croupier.interfaces.collaborators import (
    BusinessRuleService,
    MetadataRepository,
    PromptTemplateStore,
)
from croupier.interfaces.embedder import BaseEmbedder
from croupier.interfaces.llm import BaseLLMProvider
from croupier.interfaces.storage import CacheStorageBackend
from croupier.joins import JoinPathResolver, RelationshipGraph
from croupier.logging import request_id_var
from croupier.orchestrator import Orchestration, ProviderOrchestrator
from croupier.prompts import PromptAssembler
from croupier.providers import build_providers
from croupier.quality import QualityScorer, referenced_tables
from croupier.ranking import SchemaRelevanceRanker
from croupier.types import (
    AssembledPrompt,
    BusinessContext,
    CacheEntry,
    CacheHitKind,
    CachePayload,
    CacheResult,
    DomainTerm,
    EntityMention,
    EntityType,
    ErrorKind,
    Extraction,
    GenerationResult,
    JoinAmbiguity,
    JoinPath,
    Query,
    SchemaCatalog,
    SchemaSelection,
)
from croupier.utils.normalization import fingerprint, normalize_question

logger = logging.getLogger(__name__)

SEMANTIC_HIT_FACTOR = 0.9
AMBIGUITY_FACTOR = 0.85


class Croupier:
    """Natural-language to SQL generation for gambling analytics.

    Stages run strictly in order for each request: entity/intent
    extraction, schema ranking, join resolution, prompt assembly, cache
    lookup, provider orchestration with quality gating, cache write.

    Expected failures (empty question, no relevant schema, unresolvable
    prompt, exhausted providers, timeout) come back as a failed
    :class:`GenerationResult` carrying whatever diagnostics were produced
    before the failing stage.

    Args:
        embedder: An instance of BaseEmbedder (e.g., FastEmbedAdapter).
        metadata: Metadata collaborator (tables, columns, relationships).
        rules: Business rule collaborator.
        templates: Prompt template collaborator.
        providers: LLM providers. If None, built from ``settings.providers``.
        backend: Cache storage backend. If None, chosen by
            ``settings.cache.backend``.
        settings: Configuration. If None, loads from environment.
        terms: Domain term dictionary override.
        sleep: Awaitable used for retry backoff (tests pass a no-op).
        clock: Timezone-aware "now" for cache TTLs.

    Example:
        >>> from croupier import Croupier, Settings
        >>> from croupier.collaborators import load_catalog
        >>>
        >>> metadata, rules, templates = load_catalog("catalog.json")
        >>> async with Croupier(embedder, metadata, rules, templates) as croupier:
        ...     result = await croupier.generate("Total GGR for VIP players last month")
        ...     print(result.sql, result.confidence)
    """

    def __init__(
        self,
        embedder: BaseEmbedder,
        metadata: MetadataRepository,
        rules: BusinessRuleService,
        templates: PromptTemplateStore,
        providers: Optional[Iterable[BaseLLMProvider]] = None,
        backend: Optional[CacheStorageBackend] = None,
        settings: Optional[Settings] = None,
        terms: Optional[List[DomainTerm]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._settings = settings or Settings()
        s = self._settings

        self._metadata = metadata
        self._embeddings = EmbeddingService(
            embedder,
            ttl_seconds=s.cache.embedding_cache_ttl_seconds,
            max_size=s.cache.embedding_cache_max_size,
        )
        self._extractor = EntityIntentExtractor(self._embeddings, terms)
        self._ranker = SchemaRelevanceRanker(
            self._embeddings, s.ranking, s.performance.max_parallel_tasks
        )
        self._resolver = JoinPathResolver()
        self._assembler = PromptAssembler(templates, rules, s.prompt, terms)

        if backend is None:
            if s.cache.backend == "qdrant":
                backend = get_qdrant_backend()(s.cache)
            else:
                backend = InMemoryCacheBackend()
        self._cache = SemanticCache(backend, s.cache, clock=clock)

        if providers is None:
            providers = build_providers(s)
        self._orchestrator = ProviderOrchestrator(providers, s, QualityScorer(), sleep=sleep)

        self._semaphore = asyncio.Semaphore(s.performance.max_concurrent_queries)
        self._catalog: Optional[SchemaCatalog] = None
        self._graph = RelationshipGraph()
        self._stats = {
            "requests": 0,
            "succeeded": 0,
            "failed": 0,
            "cache_hits": 0,
            "timeouts": 0,
        }

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def assembler(self) -> PromptAssembler:
        return self._assembler

    @property
    def catalog(self) -> Optional[SchemaCatalog]:
        return self._catalog

    # --- Lifecycle ---

    async def start(self) -> None:
        """Prepare the cache collection and load the metadata catalog.

        Raises:
            StorageInitializationError: The cache backend could not be set up.
            MetadataUnavailable: The catalog could not be loaded.
        """
        await self._cache.start(self._embeddings.dimension)
        await self.refresh_catalog()
        logger.info(
            "Croupier started: %d tables, %d relationships, providers=%s",
            len(self._catalog.tables),
            len(self._catalog.relationships),
            self._orchestrator.provider_ids,
        )

    async def close(self) -> None:
        """Close providers and the cache backend."""
        await self._orchestrator.close()
        await self._cache.close()
        logger.info("Croupier closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def refresh_catalog(self) -> SchemaCatalog:
        """Take a fresh read-only snapshot of the metadata collaborator."""
        try:
            tables = await self._metadata.list_tables(active_only=True)
            columns = {t.name: await self._metadata.list_columns(t.name) for t in tables}
            relationships = await self._metadata.list_relationships()
        except MetadataUnavailable:
            raise
        except Exception as e:
            raise MetadataUnavailable(f"Failed to load metadata catalog: {e}") from e

        catalog = SchemaCatalog(tables=tables, columns=columns, relationships=relationships)
        self._catalog = catalog
        self._graph = RelationshipGraph(relationships)
        self._assembler.set_catalog(catalog)
        logger.debug(
            "Catalog refreshed: %d tables, %d columns, %d relationships",
            len(tables),
            sum(len(c) for c in columns.values()),
            len(relationships),
        )
        return catalog

    # --- Generation ---

    async def generate(
        self,
        question: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        template_key: Optional[str] = None,
        business_context: Optional[BusinessContext] = None,
    ) -> GenerationResult:
        """Turn *question* into SQL.

        Args:
            question: Natural language question from the user.
            user_id: Caller identity, recorded on the query.
            session_id: Session identity, recorded on the query.
            timestamp: Request time; relative dates resolve against it.
            template_key: Prompt template (default from settings).
            business_context: Extra context; ``additional`` entries override
                placeholder resolvers by key.

        Returns:
            GenerationResult. ``success`` is False for every expected
            failure, with ``error_kind`` and partial diagnostics set.
        """
        token = request_id_var.set(uuid.uuid4().hex[:12])
        started = time.perf_counter()
        self._stats["requests"] += 1
        timeout = self._settings.performance.query_timeout_seconds
        try:
            async with self._semaphore:
                try:
                    result = await asyncio.wait_for(
                        self._run(question, user_id, session_id, timestamp, template_key, business_context),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError:
                    self._stats["timeouts"] += 1
                    logger.error("Request timed out after %.1fs", timeout)
                    result = GenerationResult(
                        success=False,
                        error_kind=ErrorKind.TIMEOUT,
                        error_message=f"Request exceeded {timeout:.1f}s",
                    )
        finally:
            request_id_var.reset(token)

        result.latency_ms = (time.perf_counter() - started) * 1000.0
        self._stats["succeeded" if result.success else "failed"] += 1
        return result

    async def _run(
        self,
        question: str,
        user_id: Optional[str],
        session_id: Optional[str],
        timestamp: Optional[datetime],
        template_key: Optional[str],
        business_context: Optional[BusinessContext],
    ) -> GenerationResult:
        question = question or ""
        query = Query(
            raw_text=question,
            normalized_text=normalize_question(question),
            user_id=user_id,
            session_id=session_id,
            timestamp=timestamp or datetime.now(timezone.utc),
            complexity=estimate_complexity_from_text(question),
        )
        diagnostics: Dict[str, Any] = {"query": query}

        try:
            if self._catalog is None:
                await self.refresh_catalog()

            extraction = await self._extractor.extract(query)
            query = query.with_complexity(extraction.complexity)
            diagnostics.update(query=query, intent=extraction.intent, entities=extraction.entities)

            selection = await self._rank(query, extraction)
            diagnostics["schema_selection"] = selection

            join_path, ambiguities = self._resolve_joins(selection)
            diagnostics.update(join_path=join_path, ambiguities=ambiguities)

            context = self._business_context(business_context, extraction.entities, join_path, ambiguities)
            key = template_key or self._settings.prompt.default_template_key
            prompt = await self._assembler.assemble(key, query, extraction.intent, selection, context)
            diagnostics["prompt"] = prompt.text

            fp = self._fingerprint(query, key, context, selection, extraction.entities)
            diagnostics["fingerprint"] = fp

            embedding = await self._question_embedding(query)
            validate = self._semantic_validator(selection, extraction.entities)
            cached = await self._cache.get(fp, embedding, validate=validate)
            if cached.hit:
                self._stats["cache_hits"] += 1
                return self._from_cache(cached, diagnostics)

            outcome = await self._cache.get_or_compute(
                fp,
                lambda: self._lookup_or_generate(fp, prompt, query, extraction, selection, embedding),
            )
            if isinstance(outcome, CacheResult):
                self._stats["cache_hits"] += 1
                return self._from_cache(outcome, diagnostics)
            orchestration: Orchestration = outcome
        except ExtractionError as e:
            return self._failure(ErrorKind.EXTRACTION, e, diagnostics)
        except SchemaResolutionError as e:
            return self._failure(ErrorKind.SCHEMA_RESOLUTION, e, diagnostics, ambiguities=e.ambiguities)
        except (PromptValidationError, TemplateError) as e:
            return self._failure(ErrorKind.PROMPT_VALIDATION, e, diagnostics)
        except MetadataUnavailable as e:
            return self._failure(ErrorKind.METADATA, e, diagnostics)
        except ProvidersExhausted as e:
            return self._exhausted(e, diagnostics)
        except ProviderError as e:
            return self._failure(ErrorKind.PROVIDER, e, diagnostics)

        confidence = self._confidence(
            orchestration.quality.overall_score, CacheHitKind.MISS, bool(diagnostics["ambiguities"])
        )
        return GenerationResult(
            success=True,
            sql=orchestration.sql,
            confidence=confidence,
            provider_id=orchestration.provider_id,
            quality=orchestration.quality,
            attempts=orchestration.attempts,
            best_rejected=orchestration.best_rejected,
            cache_kind=CacheHitKind.MISS,
            **diagnostics,
        )

    async def _rank(self, query: Query, extraction: Extraction) -> SchemaSelection:
        try:
            return await self._ranker.rank(query, extraction.intent, extraction.entities, self._catalog)
        except SchemaResolutionError as e:
            relaxed = self._settings.ranking.relaxed_score_floor
            if relaxed is None or e.reason != SchemaResolutionError.NO_RELEVANT_SCHEMA:
                raise
            logger.info("No table above the score floor, retrying with relaxed floor %.2f", relaxed)
            return await self._ranker.rank(
                query, extraction.intent, extraction.entities, self._catalog, score_floor=relaxed
            )

    def _resolve_joins(self, selection: SchemaSelection) -> Tuple[Optional[JoinPath], List[str]]:
        """Join the top-scoring tables.

        Tables within ``join_inclusion_ratio`` of the best score are required.
        If they are disconnected, the group containing the best table is
        joined and the ambiguity is reported alongside.
        """
        ranking = self._settings.ranking
        top = selection.tables[0].score
        required = [
            t.table_name for t in selection.tables if t.score >= ranking.join_inclusion_ratio * top
        ][: ranking.max_join_tables]

        resolution = self._resolver.resolve_path(required, self._graph)
        if not isinstance(resolution, JoinAmbiguity):
            return resolution, []

        logger.warning(resolution.message)
        primary = next(g for g in resolution.groups if required[0] in g)
        reduced = self._resolver.resolve_path([t for t in required if t in primary], self._graph)
        path = reduced if isinstance(reduced, JoinPath) else JoinPath(tables=[required[0]])
        return path, [resolution.message]

    def _business_context(
        self,
        supplied: Optional[BusinessContext],
        entities: List[EntityMention],
        join_path: Optional[JoinPath],
        ambiguities: List[str],
    ) -> BusinessContext:
        supplied = supplied or BusinessContext()
        return BusinessContext(
            entities=entities,
            join_path=join_path,
            ambiguities=list(supplied.ambiguities) + ambiguities,
            jurisdiction=supplied.jurisdiction or self._settings.prompt.jurisdiction,
            additional=supplied.additional,
        )

    @staticmethod
    def _fingerprint(
        query: Query,
        template_key: str,
        context: BusinessContext,
        selection: SchemaSelection,
        entities: List[EntityMention],
    ) -> str:
        return fingerprint(
            query.normalized_text,
            {
                "template": template_key,
                "jurisdiction": context.jurisdiction,
                "tables": sorted(selection.table_names()),
                "temporal": sorted(
                    e.normalized_value for e in entities if e.entity_type == EntityType.TEMPORAL
                ),
            },
        )

    async def _question_embedding(self, query: Query) -> Optional[List[float]]:
        try:
            return await self._embeddings.embed(query.normalized_text)
        except EmbeddingUnavailable as e:
            logger.warning("No question embedding, semantic cache lookup skipped: %s", e)
            return None

    def _semantic_validator(
        self, selection: SchemaSelection, entities: List[EntityMention]
    ) -> Optional[Callable[[CacheEntry], bool]]:
        """A semantic candidate must stay within the selected tables and
        mention every resolved date bound of the current question."""
        if not self._settings.cache.revalidate_semantic_hits:
            return None
        allowed = {name.lower() for name in selection.table_names()}
        bounds = [
            bound.isoformat()
            for e in entities
            if e.temporal_range is not None
            for bound in (e.temporal_range.start, e.temporal_range.end)
        ]

        def validate(entry: CacheEntry) -> bool:
            sql = entry.payload.sql
            tables = referenced_tables(sql)
            return (
                bool(tables)
                and all(t.lower() in allowed for t in tables)
                and all(b in sql for b in bounds)
            )

        return validate

    async def _lookup_or_generate(
        self,
        fp: str,
        prompt: AssembledPrompt,
        query: Query,
        extraction: Extraction,
        selection: SchemaSelection,
        embedding: Optional[List[float]],
    ) -> Union[CacheResult, Orchestration]:
        """Single-flight leader body.

        A previous leader may have stored its result while this request was
        still reading the cache, so the exact fingerprint is checked again
        before any provider is called.
        """
        cached = await self._cache.get_exact(fp)
        if cached.hit:
            return cached
        return await self._generate_and_store(fp, prompt, query, extraction, selection, embedding)

    async def _generate_and_store(
        self,
        fp: str,
        prompt: AssembledPrompt,
        query: Query,
        extraction: Extraction,
        selection: SchemaSelection,
        embedding: Optional[List[float]],
    ) -> Orchestration:
        orchestration = await self._orchestrator.generate(
            prompt.text, query.complexity, selection, extraction.intent, extraction.entities
        )
        await self._cache.set(
            fp,
            embedding or [0.0] * self._embeddings.dimension,
            CachePayload(
                prompt=prompt.text,
                sql=orchestration.sql,
                confidence=orchestration.quality.overall_score,
                provider_id=orchestration.provider_id,
                quality=orchestration.quality,
                schema_selection=selection,
            ),
            normalized_question=query.normalized_text,
        )
        return orchestration

    # --- Results ---

    @staticmethod
    def _confidence(base: float, kind: CacheHitKind, ambiguous: bool) -> float:
        confidence = base
        if kind == CacheHitKind.SEMANTIC:
            confidence *= SEMANTIC_HIT_FACTOR
        if ambiguous:
            confidence *= AMBIGUITY_FACTOR
        return round(max(0.0, min(1.0, confidence)), 4)

    def _from_cache(self, cached: CacheResult, diagnostics: Dict[str, Any]) -> GenerationResult:
        payload = cached.entry.payload
        logger.info("Served from cache (%s, similarity=%.3f)", cached.kind.value, cached.similarity)
        return GenerationResult(
            success=True,
            sql=payload.sql,
            confidence=self._confidence(
                payload.confidence, cached.kind, bool(diagnostics.get("ambiguities"))
            ),
            provider_id=payload.provider_id,
            quality=payload.quality,
            cache_kind=cached.kind,
            **diagnostics,
        )

    @staticmethod
    def _failure(
        kind: ErrorKind, error: Exception, diagnostics: Dict[str, Any], **extra: Any
    ) -> GenerationResult:
        if kind in (ErrorKind.EXTRACTION, ErrorKind.SCHEMA_RESOLUTION, ErrorKind.PROMPT_VALIDATION):
            logger.warning("Generation failed (%s): %s", kind.value, error)
        else:
            logger.error("Generation failed (%s): %s", kind.value, error)
        fields = {**diagnostics, **extra}
        return GenerationResult(success=False, error_kind=kind, error_message=str(error), **fields)

    def _exhausted(self, error: ProvidersExhausted, diagnostics: Dict[str, Any]) -> GenerationResult:
        best = error.best_rejected
        kind = ErrorKind.QUALITY_GATE if best is not None else ErrorKind.PROVIDER
        extra: Dict[str, Any] = {"attempts": error.attempts, "best_rejected": best}
        if best is not None and self._settings.exhaustion_policy == "best_effort":
            extra.update(sql=best.sql, quality=best.quality)
        return self._failure(kind, error, diagnostics, **extra)

    # --- Stats & maintenance ---

    @property
    def stats(self) -> Dict[str, Dict[str, int]]:
        """Pipeline, cache and embedding counters."""
        return {
            "pipeline": dict(self._stats),
            "cache": self._cache.stats,
            "embeddings": self._embeddings.stats,
        }

    async def clear_caches(self) -> int:
        """Drop cached results and embeddings. Returns the number of cache entries removed."""
        self._embeddings.clear()
        removed = await self._cache.clear()
        logger.info("Cleared %d cache entries", removed)
        return removed

    # --- Sync wrappers ---

    def generate_sync(self, question: str, **kwargs) -> GenerationResult:
        """Synchronous wrapper for generate()."""
        return BaseEmbedder._run_sync(self.generate(question, **kwargs))
