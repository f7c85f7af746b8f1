"""SchemaRelevanceRanker: multi-signal ranking of tables and columns."""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from croupier.config import RankingSettings
from croupier.embeddings.service import EmbeddingService
from croupier.exceptions import EmbeddingUnavailable, SchemaResolutionError
from croupier.types import (
    ColumnMetadata,
    EntityMention,
    EntityType,
    Query,
    QueryIntent,
    RelevanceScore,
    SchemaCatalog,
    SchemaSelection,
    SignalBreakdown,
    TableMetadata,
)
from croupier.utils.nlp import extract_keywords, matched_keywords, suggest_terms, vocabulary

logger = logging.getLogger(__name__)

# (subject, table, column, importance, embedding, vocabulary)
_Candidate = Tuple[str, str, Optional[str], float, Optional[List[float]], Set[str]]


def query_keywords(query: Query, entities: Sequence[EntityMention]) -> List[str]:
    """Content keywords of the question.

    Temporal expressions are not schema vocabulary and are skipped. Words
    covered by a dictionary term are replaced by the term key, so that
    "gross gaming revenue" is matched as ``ggr``.
    """
    spans = [
        (e.start, e.end)
        for e in entities
        if e.entity_type == EntityType.TEMPORAL or e.subtype == "term"
    ]
    keywords = extract_keywords(query.raw_text, exclude_spans=spans)
    for e in sorted(entities, key=lambda m: m.start):
        if e.subtype == "term" and e.normalized_value not in keywords:
            keywords.append(e.normalized_value)
    return keywords


def _table_vocabulary(table: TableMetadata) -> Set[str]:
    texts = [table.info.name, table.info.business_purpose, table.info.domain_classification]
    if table.semantic is not None:
        texts.extend(table.semantic.keywords)
        texts.extend(table.semantic.synonyms)
        texts.extend(table.semantic.related_business_terms)
    return vocabulary(texts)


def _column_vocabulary(column: ColumnMetadata) -> Set[str]:
    texts = [column.info.name, column.info.business_meaning]
    if column.semantic is not None:
        texts.extend(column.semantic.keywords)
        texts.extend(column.semantic.synonyms)
        texts.extend(column.semantic.related_business_terms)
    return vocabulary(texts)


class SchemaRelevanceRanker:
    """Rank tables, then the columns of the top tables.

    ``score = w1*cosine + w2*keyword_overlap + w3*importance + w4*entity_bonus``

    The entity bonus is the highest confidence among extracted entities that
    declare the candidate as a related table (or column). When embeddings are
    unavailable the semantic term is dropped and the remaining weights are
    rescaled to sum to one; the selection is then flagged ``degraded``.

    Args:
        embeddings: Shared embedding service.
        settings: Weights, cut-offs and caps.
        max_parallel_tasks: Number of worker chunks for scoring.
    """

    def __init__(
        self,
        embeddings: EmbeddingService,
        settings: Optional[RankingSettings] = None,
        max_parallel_tasks: int = 4,
    ):
        self._embeddings = embeddings
        self._settings = settings or RankingSettings()
        self._max_parallel_tasks = max(1, max_parallel_tasks)

    @property
    def settings(self) -> RankingSettings:
        return self._settings

    async def rank(
        self,
        query: Query,
        intent: QueryIntent,
        entities: Sequence[EntityMention],
        catalog: SchemaCatalog,
        score_floor: Optional[float] = None,
    ) -> SchemaSelection:
        """Rank the catalog for one question.

        Raises:
            SchemaResolutionError: The catalog is empty or no table reaches
                the score floor. Unknown query terms (with suggestions) are
                listed in ``ambiguities``.
        """
        floor = self._settings.score_floor if score_floor is None else score_floor
        keywords = query_keywords(query, entities)

        if not catalog.tables:
            raise SchemaResolutionError(
                "No relevant schema: the metadata catalog is empty",
                ambiguities=[f"unknown term '{k}'" for k in keywords],
            )

        degraded = False
        query_vec: Optional[List[float]] = None
        try:
            query_vec = await self._embeddings.embed(query.normalized_text or query.raw_text)
            table_vecs = await self._embeddings_for(catalog.tables)
        except EmbeddingUnavailable as e:
            logger.warning("Ranking degraded to keyword-only scoring: %s", e)
            degraded = True
            table_vecs = [None] * len(catalog.tables)

        candidates: List[_Candidate] = [
            (t.name, t.name, None, t.importance, vec, _table_vocabulary(t))
            for t, vec in zip(catalog.tables, table_vecs)
        ]
        table_bonus = self._entity_bonus(entities, by_column=False)
        ranked_tables = await self._score_all(candidates, query_vec, keywords, table_bonus, degraded)

        top = ranked_tables[0]
        if top.score < floor:
            unmatched = self._unmatched(keywords, [c[5] for c in candidates])
            raise SchemaResolutionError(
                f"No relevant schema: best table '{top.table_name}' scored "
                f"{top.score:.3f} below floor {floor:.2f}",
                ambiguities=self._describe_unmatched(unmatched, catalog) or [
                    f"no table scored above {floor:.2f}"
                ],
            )

        selected = [t for t in ranked_tables if t.score >= floor][: self._settings.top_k_tables]
        columns = await self._rank_columns(
            selected, catalog, query_vec, keywords, entities, degraded
        )

        vocab = [_table_vocabulary(t) for t in catalog.tables if t.name in {s.table_name for s in selected}]
        vocab.extend(
            _column_vocabulary(c)
            for s in selected
            for c in catalog.columns_of(s.table_name)
        )
        unmatched = self._unmatched(keywords, vocab)

        logger.debug(
            "Ranked %d tables (%d selected, top=%s %.3f), %d columns, degraded=%s",
            len(ranked_tables),
            len(selected),
            top.table_name,
            top.score,
            len(columns),
            degraded,
        )
        return SchemaSelection(
            tables=selected, columns=columns, degraded=degraded, unmatched_terms=unmatched
        )

    # --- Columns ---

    async def _rank_columns(
        self,
        tables: List[RelevanceScore],
        catalog: SchemaCatalog,
        query_vec: Optional[List[float]],
        keywords: List[str],
        entities: Sequence[EntityMention],
        degraded: bool,
    ) -> List[RelevanceScore]:
        if self._settings.max_columns == 0:
            return []
        columns = [c for t in tables for c in catalog.columns_of(t.table_name)]
        if not columns:
            return []

        vectors: List[Optional[List[float]]] = [None] * len(columns)
        if not degraded:
            try:
                vectors = await self._embeddings_for(columns)
            except EmbeddingUnavailable as e:
                logger.warning("Column ranking degraded to keyword-only scoring: %s", e)
                degraded = True

        candidates: List[_Candidate] = [
            (c.identifier, c.table_name, c.name, c.importance, vec, _column_vocabulary(c))
            for c, vec in zip(columns, vectors)
        ]
        bonus = self._entity_bonus(entities, by_column=True)
        ranked = await self._score_all(candidates, query_vec, keywords, bonus, degraded)
        return ranked[: self._settings.max_columns]

    # --- Scoring ---

    async def _score_all(
        self,
        candidates: List[_Candidate],
        query_vec: Optional[List[float]],
        keywords: List[str],
        bonus: Dict[str, float],
        degraded: bool,
    ) -> List[RelevanceScore]:
        size = max(1, -(-len(candidates) // self._max_parallel_tasks))
        chunks = [candidates[i : i + size] for i in range(0, len(candidates), size)]
        results = await asyncio.gather(
            *(
                asyncio.to_thread(self._score_chunk, chunk, query_vec, keywords, bonus, degraded)
                for chunk in chunks
            )
        )
        scored = [item for chunk in results for item in chunk]
        scored.sort(key=lambda s: (-s.score, -s.importance, s.subject))
        return scored

    def _score_chunk(
        self,
        chunk: List[_Candidate],
        query_vec: Optional[List[float]],
        keywords: List[str],
        bonus: Dict[str, float],
        degraded: bool,
    ) -> List[RelevanceScore]:
        s = self._settings
        if degraded:
            scale = s.keyword_weight + s.importance_weight + s.entity_weight
            w_sem = 0.0
            w_kw, w_imp, w_ent = (
                (s.keyword_weight / scale, s.importance_weight / scale, s.entity_weight / scale)
                if scale > 0
                else (0.0, 0.0, 0.0)
            )
        else:
            w_sem, w_kw, w_imp, w_ent = (
                s.semantic_weight,
                s.keyword_weight,
                s.importance_weight,
                s.entity_weight,
            )

        out = []
        for subject, table_name, column_name, importance, vec, vocab in chunk:
            semantic = 0.0
            if not degraded and query_vec is not None and vec is not None:
                semantic = max(0.0, EmbeddingService.cosine_similarity(query_vec, vec))
            matched = matched_keywords(keywords, vocab)
            overlap = len(matched) / len(keywords) if keywords else 0.0
            key = (column_name or table_name).lower()
            entity = bonus.get(key, 0.0)
            score = w_sem * semantic + w_kw * overlap + w_imp * importance + w_ent * entity
            score = round(max(0.0, min(1.0, score)), 6)
            out.append(
                RelevanceScore(
                    subject=subject,
                    table_name=table_name,
                    column_name=column_name,
                    score=score,
                    importance=importance,
                    signals=SignalBreakdown(
                        semantic_similarity=round(semantic, 6),
                        keyword_overlap=round(overlap, 6),
                        importance=importance,
                        entity_bonus=entity,
                    ),
                    matched_keywords=matched,
                    reasoning=(
                        f"semantic={semantic:.2f} keywords={len(matched)}/{len(keywords)}"
                        f"{' [' + ', '.join(matched) + ']' if matched else ''} "
                        f"importance={importance:.2f} entity={entity:.2f}"
                        f"{' (keyword-only)' if degraded else ''}"
                    ),
                )
            )
        return out

    # --- Helpers ---

    async def _embeddings_for(self, items: Sequence) -> List[List[float]]:
        """Precomputed vectors where present; the rest embedded in one batch."""
        vectors: List[Optional[List[float]]] = [item.embedding for item in items]
        missing = [i for i, v in enumerate(vectors) if not v]
        if missing:
            computed = await self._embeddings.embed_batch([items[i].embedding_text() for i in missing])
            for i, vec in zip(missing, computed):
                vectors[i] = vec
        return [v or [] for v in vectors]

    @staticmethod
    def _entity_bonus(entities: Sequence[EntityMention], by_column: bool) -> Dict[str, float]:
        bonus: Dict[str, float] = {}
        for e in entities:
            names = e.related_columns if by_column else e.related_tables
            for name in names:
                key = name.lower()
                bonus[key] = max(bonus.get(key, 0.0), e.confidence)
        return bonus

    @staticmethod
    def _unmatched(keywords: List[str], vocabularies: Sequence[Set[str]]) -> List[str]:
        return [k for k in keywords if not any(k in v for v in vocabularies)]

    @staticmethod
    def _describe_unmatched(unmatched: List[str], catalog: SchemaCatalog) -> List[str]:
        known: Set[str] = set()
        for t in catalog.tables:
            known |= _table_vocabulary(t)
        described = []
        for term in unmatched:
            suggestions = suggest_terms(term, known)
            if suggestions:
                described.append(f"unknown term '{term}' (did you mean: {', '.join(suggestions)}?)")
            else:
                described.append(f"unknown term '{term}'")
        return described
