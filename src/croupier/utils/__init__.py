"""Utility functions for text normalization and keyword processing."""

from croupier.utils.normalization import fingerprint, normalize_question, text_hash
from croupier.utils.nlp import (
    extract_keywords,
    keyword_overlap_score,
    split_identifier,
    stem,
    suggest_terms,
    tokenize,
)

__all__ = [
    "normalize_question",
    "text_hash",
    "fingerprint",
    "extract_keywords",
    "keyword_overlap_score",
    "split_identifier",
    "stem",
    "suggest_terms",
    "tokenize",
]
