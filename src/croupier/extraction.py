"""EntityIntentExtractor: intent classification and typed entity extraction."""

import logging
import re
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from croupier.domain import (
    DEFAULT_DOMAIN_TERMS,
    GAME_COLUMNS,
    GAME_TABLES,
    INTENT_CUES,
    PLAYER_COLUMNS,
    PLAYER_TABLES,
)
from croupier.embeddings.service import EmbeddingService
from croupier.exceptions import EmbeddingUnavailable, ExtractionError
from croupier.temporal import extract_temporal
from croupier.types import (
    DomainTerm,
    EntityMention,
    EntityType,
    Extraction,
    Query,
    QueryComplexity,
    QueryIntent,
)

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 0.95
PHRASE_CONFIDENCE = 0.9
BASE_CONFIDENCE = 0.8
GENERIC_CONFIDENCE = 0.7
CUE_CONFIDENCE = 0.6

_PLURAL = r"(?:s|es)?"
_AMOUNT = r"(\d[\d,]*(?:\.\d+)?)(?:\s?([km])\b)?"
_CURRENCY_SYMBOLS = {"£": "GBP", "$": "USD", "€": "EUR"}
_CURRENCY_WORDS = {
    "gbp": "GBP", "pound": "GBP", "pounds": "GBP",
    "usd": "USD", "dollar": "USD", "dollars": "USD",
    "eur": "EUR", "euro": "EUR", "euros": "EUR",
}
_COMPARATORS = {
    "over": "gt", "above": "gt", "more than": "gt", "greater than": "gt", "exceeding": "gt",
    "at least": "gte", "under": "lt", "below": "lt", "less than": "lt", "at most": "lte",
}

_COMPARATOR_RE = r"(?:(over|above|more\s+than|greater\s+than|exceeding|at\s+least|under|below|less\s+than|at\s+most)\s+)?"
_AMOUNT_PATTERNS: List[Pattern] = [
    re.compile(_COMPARATOR_RE + r"([£$€])\s?" + _AMOUNT, re.I),
    re.compile(_COMPARATOR_RE + _AMOUNT + r"\s*(gbp|usd|eur|pounds?|dollars?|euros?)\b", re.I),
]

# (pattern, subtype, confidence, value group or None)
_PLAYER_PATTERNS: List[Tuple[Pattern, str, float, Optional[int]]] = [
    (re.compile(r"\bplayer\s*(?:id)?\s*#?\s*(\d+)\b", re.I), "player_id", EXACT_CONFIDENCE, 1),
    (
        re.compile(
            r"\b(vip|high\s+roller|whale|premium|bronze|silver|gold|platinum)s?"
            r"(?:\s+(?:players?|customers?|members?|users?))?\b",
            re.I,
        ),
        "segment",
        BASE_CONFIDENCE,
        1,
    ),
    (
        re.compile(
            r"\b(new|active|inactive|returning|dormant|registered|depositing)\s+"
            r"(?:players?|customers?|members?|users?)\b",
            re.I,
        ),
        "player_type",
        BASE_CONFIDENCE,
        1,
    ),
    (
        re.compile(
            r"\b(suspended|blocked|verified|self[\s-]excluded|closed)\s+"
            r"(?:players?|customers?|accounts?)\b",
            re.I,
        ),
        "status",
        BASE_CONFIDENCE,
        1,
    ),
    (re.compile(r"\b(?:players?|customers?|members?|gamblers?)\b", re.I), "player", GENERIC_CONFIDENCE, None),
]

_GAME_PATTERNS: List[Tuple[Pattern, str, float, Optional[int]]] = [
    (re.compile(r"\bgame\s*(?:id)?\s*#?\s*(\d+)\b", re.I), "game_id", EXACT_CONFIDENCE, 1),
    (
        re.compile(
            r"\b(netent|microgaming|playtech|evolution|pragmatic(?:\s+play)?|play'?n\s*go|red\s+tiger)\b",
            re.I,
        ),
        "provider",
        PHRASE_CONFIDENCE,
        1,
    ),
    (
        re.compile(
            r"\b(slots?|blackjack|poker|roulette|baccarat|bingo|lottery|keno|scratch\s*cards?|game\s+shows?)\b",
            re.I,
        ),
        "game_type",
        BASE_CONFIDENCE,
        1,
    ),
    (re.compile(r"\b(casino|sports?|live)\s+(?:games?|betting)\b", re.I), "category", BASE_CONFIDENCE, 1),
    (re.compile(r"\b(mobile|desktop|tablet|ios|android)\b", re.I), "platform", 0.75, 1),
    (re.compile(r"\bgames?\b", re.I), "game", GENERIC_CONFIDENCE, None),
]

_METRIC_CUE_RE = re.compile(
    r"\b(revenue|profit|volume|count|average|percentage|ratio|rate|growth)\b", re.I
)

_TREND_LIKE = {
    QueryIntent.TREND,
    QueryIntent.COMPARISON,
    QueryIntent.CORRELATION,
    QueryIntent.FORECAST,
    QueryIntent.ANOMALY,
}


def estimate_complexity_from_text(text: str) -> QueryComplexity:
    """Initial estimate from word count, refined after extraction."""
    words = len(text.split())
    if words <= 8:
        return QueryComplexity.SIMPLE
    if words <= 16:
        return QueryComplexity.MEDIUM
    if words <= 30:
        return QueryComplexity.COMPLEX
    return QueryComplexity.VERY_COMPLEX


def complexity_score(entities: Sequence[EntityMention], intent: QueryIntent) -> int:
    """entities + 3 per metric + 2 if temporal + 2 for analytical intents."""
    metrics = sum(1 for e in entities if e.entity_type == EntityType.METRIC)
    temporal = any(e.entity_type == EntityType.TEMPORAL for e in entities)
    score = len(entities) + 3 * metrics
    if temporal:
        score += 2
    if intent in _TREND_LIKE:
        score += 2
    return score


def dedupe_mentions(mentions: Iterable[EntityMention]) -> List[EntityMention]:
    """Drop overlapping mentions of the same type.

    Highest confidence wins; equal confidence keeps the longer span, then the
    earlier one. Mentions of different types may overlap.
    """
    ranked = sorted(mentions, key=lambda m: (-m.confidence, -m.length, m.start, m.text))
    kept: List[EntityMention] = []
    for mention in ranked:
        if any(k.entity_type == mention.entity_type and k.overlaps(mention) for k in kept):
            continue
        kept.append(mention)
    return sorted(kept, key=lambda m: (m.start, m.entity_type.value))


def _phrase_pattern(phrase: str) -> Pattern:
    body = r"\s+".join(re.escape(w) for w in phrase.split())
    return re.compile(r"\b" + body + _PLURAL + r"\b", re.I)


def _parse_amount(raw: str, suffix: Optional[str]) -> float:
    value = float(raw.replace(",", ""))
    if suffix:
        value *= 1000 if suffix.lower() == "k" else 1_000_000
    return value


class EntityIntentExtractor:
    """Classify the intent of a question and extract typed entity mentions.

    Intent scoring: one point per matched keyword cue, plus ``exemplar_weight``
    times the best cosine similarity between the question and the intent's
    exemplar questions. When embeddings are unavailable the rule score alone
    decides.

    Args:
        embeddings: Shared embedding service.
        terms: Domain term dictionary (metric and financial terms).
        intent_cues: intent -> (keyword cues, exemplar questions).
        exemplar_weight: Weight of the embedding signal.
    """

    def __init__(
        self,
        embeddings: EmbeddingService,
        terms: Optional[List[DomainTerm]] = None,
        intent_cues: Optional[Dict[QueryIntent, Tuple[List[str], List[str]]]] = None,
        exemplar_weight: float = 0.5,
    ):
        self._embeddings = embeddings
        self._terms = list(terms if terms is not None else DEFAULT_DOMAIN_TERMS)
        self._intent_cues = intent_cues or INTENT_CUES
        self._exemplar_weight = exemplar_weight
        self._term_patterns: List[Tuple[DomainTerm, str, Pattern]] = [
            (term, synonym, _phrase_pattern(synonym))
            for term in self._terms
            for synonym in sorted(term.synonyms, key=len, reverse=True)
        ]
        self._cue_patterns: Dict[QueryIntent, List[Pattern]] = {
            intent: [_phrase_pattern(cue) for cue in cues]
            for intent, (cues, _exemplars) in self._intent_cues.items()
        }

    @property
    def terms(self) -> List[DomainTerm]:
        return list(self._terms)

    async def extract(self, query: Query) -> Extraction:
        """Extract intent, entities and refined complexity from *query*.

        Raises:
            ExtractionError: If the question is empty.
        """
        if not query.raw_text or not query.raw_text.strip():
            raise ExtractionError("Cannot analyse an empty question")

        text = query.raw_text
        candidates: List[EntityMention] = []
        candidates.extend(self._extract_terms(text))
        candidates.extend(self._extract_metric_cues(text))
        candidates.extend(extract_temporal(text, query.today))
        candidates.extend(self._extract_amounts(text))
        candidates.extend(
            self._extract_patterns(text, _PLAYER_PATTERNS, EntityType.PLAYER, PLAYER_TABLES, PLAYER_COLUMNS)
        )
        candidates.extend(
            self._extract_patterns(text, _GAME_PATTERNS, EntityType.GAME, GAME_TABLES, GAME_COLUMNS)
        )
        entities = dedupe_mentions(candidates)

        intent, scores = await self._classify_intent(query.normalized_text or text.lower())
        complexity = QueryComplexity.from_score(complexity_score(entities, intent))

        logger.debug(
            "Extracted intent=%s complexity=%s entities=%s",
            intent.value,
            complexity.value,
            [f"{e.entity_type.value}:{e.normalized_value}" for e in entities],
        )
        return Extraction(
            intent=intent,
            intent_scores=scores,
            entities=entities,
            complexity=complexity,
        )

    # --- Intent ---

    async def _classify_intent(self, text: str) -> Tuple[QueryIntent, Dict[str, float]]:
        rule_scores = {
            intent: float(sum(len(p.findall(text)) for p in patterns))
            for intent, patterns in self._cue_patterns.items()
        }
        best_exemplar = await self._exemplar_similarities(text)

        scores: Dict[QueryIntent, float] = {}
        for intent in self._intent_cues:
            scores[intent] = rule_scores.get(intent, 0.0) + self._exemplar_weight * max(
                0.0, best_exemplar.get(intent, 0.0)
            )

        if not scores or max(scores.values()) <= 0.0:
            return QueryIntent.SELECT, {i.value: 0.0 for i in scores}

        winner = min(
            scores,
            key=lambda i: (-round(scores[i], 9), -round(best_exemplar.get(i, 0.0), 9), i.value),
        )
        return winner, {i.value: round(s, 4) for i, s in scores.items()}

    async def _exemplar_similarities(self, text: str) -> Dict[QueryIntent, float]:
        owners: List[QueryIntent] = []
        exemplars: List[str] = []
        for intent, (_cues, examples) in self._intent_cues.items():
            for example in examples:
                owners.append(intent)
                exemplars.append(example)
        if not exemplars or self._exemplar_weight <= 0.0:
            return {}

        try:
            query_vec = await self._embeddings.embed(text)
            vectors = await self._embeddings.embed_batch(exemplars)
        except EmbeddingUnavailable as e:
            logger.warning("Intent exemplars skipped, embeddings unavailable: %s", e)
            return {}

        best: Dict[QueryIntent, float] = {}
        for intent, vec in zip(owners, vectors):
            sim = EmbeddingService.cosine_similarity(query_vec, vec)
            if sim > best.get(intent, float("-inf")):
                best[intent] = sim
        return best

    # --- Entities ---

    def _extract_terms(self, text: str) -> List[EntityMention]:
        mentions = []
        for term, synonym, pattern in self._term_patterns:
            for match in pattern.finditer(text):
                if synonym == term.key and len(synonym) <= 4:
                    confidence = EXACT_CONFIDENCE
                elif " " in synonym:
                    confidence = PHRASE_CONFIDENCE
                else:
                    confidence = BASE_CONFIDENCE
                mentions.append(
                    EntityMention(
                        entity_type=term.entity_type,
                        text=match.group(0),
                        start=match.start(),
                        end=match.end(),
                        confidence=confidence,
                        normalized_value=term.key,
                        subtype="term",
                        synonyms=list(term.synonyms),
                        related_tables=list(term.related_tables),
                        related_columns=list(term.related_columns),
                    )
                )
        return mentions

    @staticmethod
    def _extract_metric_cues(text: str) -> List[EntityMention]:
        return [
            EntityMention(
                entity_type=EntityType.METRIC,
                text=m.group(0),
                start=m.start(),
                end=m.end(),
                confidence=CUE_CONFIDENCE,
                normalized_value=m.group(1).lower(),
                subtype="cue",
            )
            for m in _METRIC_CUE_RE.finditer(text)
        ]

    @staticmethod
    def _extract_amounts(text: str) -> List[EntityMention]:
        mentions = []
        for index, pattern in enumerate(_AMOUNT_PATTERNS):
            for m in pattern.finditer(text):
                comparator = m.group(1)
                if index == 0:
                    currency = _CURRENCY_SYMBOLS[m.group(2)]
                    amount = _parse_amount(m.group(3), m.group(4))
                else:
                    amount = _parse_amount(m.group(2), m.group(3))
                    currency = _CURRENCY_WORDS[m.group(4).lower()]
                op = _COMPARATORS[" ".join(comparator.lower().split())] if comparator else None
                value = f"{amount:.2f} {currency}"
                mentions.append(
                    EntityMention(
                        entity_type=EntityType.FINANCIAL,
                        text=m.group(0),
                        start=m.start(),
                        end=m.end(),
                        confidence=PHRASE_CONFIDENCE,
                        normalized_value=f"{op} {value}" if op else value,
                        subtype="threshold" if op else "amount",
                    )
                )
        return mentions

    @staticmethod
    def _extract_patterns(
        text: str,
        patterns: List[Tuple[Pattern, str, float, Optional[int]]],
        entity_type: EntityType,
        tables: List[str],
        columns: List[str],
    ) -> List[EntityMention]:
        mentions = []
        for pattern, subtype, confidence, group in patterns:
            for m in pattern.finditer(text):
                value = " ".join(m.group(group).lower().split()) if group else entity_type.value
                mentions.append(
                    EntityMention(
                        entity_type=entity_type,
                        text=m.group(0),
                        start=m.start(),
                        end=m.end(),
                        confidence=confidence,
                        normalized_value=f"{subtype}:{value}",
                        subtype=subtype,
                        related_tables=list(tables),
                        related_columns=list(columns),
                    )
                )
        return mentions
