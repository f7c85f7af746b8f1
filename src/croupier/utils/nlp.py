"""NLP utilities: tokenization, keyword extraction, overlap scoring, term suggestions."""

import re
from typing import Iterable, List, NamedTuple, Sequence, Set, Tuple

from rapidfuzz import fuzz, process

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")

_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "are", "was", "were", "be", "been", "it",
    "its", "this", "that", "these", "those", "what", "which", "who", "whom",
    "how", "many", "much", "me", "my", "our", "we", "i", "you", "do", "does",
    "did", "have", "has", "had", "per", "each", "all", "any", "there", "than",
    "then", "into", "over", "between", "about", "during", "can", "could",
    "would", "should", "will", "please",
})

# Request verbs and aggregation cues carry intent, not schema vocabulary.
_INTENT_WORDS = frozenset({
    "show", "list", "get", "give", "find", "display", "tell", "total", "sum",
    "average", "avg", "mean", "top", "bottom", "highest", "lowest", "most",
    "least", "trend", "compare", "versus", "vs", "breakdown", "distribution",
    "correlation", "forecast", "predict", "drill", "detail", "details",
})

_IDENTIFIER_NOISE = frozenset({"tbl", "dbo", "id"})


class Token(NamedTuple):
    text: str
    start: int
    end: int


def stem(word: str) -> str:
    """Very light plural stripping so ``players`` matches ``player``."""
    word = word.lower()
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def tokenize(text: str) -> List[Token]:
    """Lowercase word tokens with their character spans in *text*."""
    lowered = text.lower()
    return [Token(m.group(0), m.start(), m.end()) for m in _TOKEN_RE.finditer(lowered)]


def extract_keywords(
    text: str,
    exclude_spans: Iterable[Tuple[int, int]] = (),
) -> List[str]:
    """Distinct stemmed content words of *text* in order of appearance.

    Tokens falling inside any of *exclude_spans* (e.g. temporal expressions)
    are skipped.
    """
    spans = list(exclude_spans)
    seen: Set[str] = set()
    keywords: List[str] = []
    for token in tokenize(text):
        if any(start <= token.start and token.end <= end for start, end in spans):
            continue
        if token.text in _STOP_WORDS or token.text in _INTENT_WORDS:
            continue
        if token.text.isdigit():
            continue
        word = stem(token.text)
        if word not in seen:
            seen.add(word)
            keywords.append(word)
    return keywords


def split_identifier(identifier: str) -> List[str]:
    """Split ``tbl_Daily_actions`` or ``BetsCasino`` into stemmed words."""
    words: List[str] = []
    for part in re.split(r"[_\W]+", identifier):
        for piece in _CAMEL_RE.findall(part):
            piece = stem(piece)
            if piece and piece not in _IDENTIFIER_NOISE:
                words.append(piece)
    return words


def vocabulary(texts: Iterable[str]) -> Set[str]:
    """Stemmed vocabulary of free-text fields and identifiers."""
    vocab: Set[str] = set()
    for text in texts:
        if not text:
            continue
        vocab.update(split_identifier(text))
        vocab.update(stem(t.text) for t in tokenize(text) if t.text not in _STOP_WORDS)
    return vocab


def keyword_overlap_score(query_keywords: Sequence[str], candidate_vocabulary: Set[str]) -> float:
    """Fraction of query keywords present in a candidate's vocabulary.

    Returns:
        Float in [0.0, 1.0]; 0.0 when the query has no keywords.
    """
    if not query_keywords:
        return 0.0
    matched = [k for k in query_keywords if k in candidate_vocabulary]
    return len(matched) / len(query_keywords)


def matched_keywords(query_keywords: Sequence[str], candidate_vocabulary: Set[str]) -> List[str]:
    return [k for k in query_keywords if k in candidate_vocabulary]


def suggest_terms(
    term: str,
    known_terms: Iterable[str],
    limit: int = 3,
    score_cutoff: float = 70.0,
) -> List[str]:
    """Closest known terms to *term* by Levenshtein ratio, best first."""
    choices = sorted(set(known_terms))
    if not term or not choices:
        return []
    matches = process.extract(
        term, choices, scorer=fuzz.ratio, limit=limit, score_cutoff=score_cutoff
    )
    return [choice for choice, _score, _index in matches]
