"""Text normalization: lowercasing, whitespace cleanup, phrase replacement, hashing."""

import hashlib
import json
import re
from typing import Any, List, Mapping, Optional, Tuple

_DEFAULT_REPLACEMENTS: List[Tuple[str, str]] = [
    (r"\bfirst\s+(\d+)\b", r"top \1"),
    # Longer phrases first to avoid partial matches.
    (r"\bcan\s+you\s+tell\s+me\b", "get"),
    (r"\bcould\s+you\s+(show|get|find|list)\b", r"\1"),
    (r"\bi\s+want\s+to\s+know\b", "get"),
    (r"\bget\s+me\s+the\b", "get"),
    (r"\bget\s+me\b", "get"),
    (r"\bshow\s+me\s+the\b", "show"),
    (r"\bshow\s+me\b", "show"),
    (r"\bgross\s+gaming\s+revenue\b", "ggr"),
    (r"\bnet\s+gaming\s+revenue\b", "ngr"),
    (r"\breturn\s+to\s+player\b", "rtp"),
    (r"\bhigh[\s-]+rollers?\b", "high roller"),
    (r"\bplease\b", ""),
]


def normalize_question(
    question: str,
    extra_replacements: Optional[List[Tuple[str, str]]] = None,
) -> str:
    """Normalize a natural-language question into canonical form.

    Steps:
        1. Strip and collapse whitespace.
        2. Lowercase.
        3. Apply replacement patterns (default + extras).
        4. Remove trailing punctuation.
        5. Final whitespace cleanup.

    Returns:
        Normalized string. Returns "" for empty/whitespace-only input.
    """
    text = " ".join(question.split())
    if not text:
        return ""

    text = text.lower()

    replacements = _DEFAULT_REPLACEMENTS
    if extra_replacements:
        replacements = replacements + list(extra_replacements)

    for pattern, replacement in replacements:
        text = re.sub(pattern, replacement, text)

    text = re.sub(r"[.!?]+$", "", text)

    return " ".join(text.split())


def text_hash(text: str) -> str:
    """Return the SHA-256 hex digest of *text* (used as the embedding cache key)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def fingerprint(normalized_question: str, context: Optional[Mapping[str, Any]] = None) -> str:
    """Deterministic cache key for a normalized question plus request context.

    The context is serialized with sorted keys so that equal mappings always
    produce equal fingerprints.
    """
    blob = json.dumps(
        {"q": normalized_question, "ctx": dict(context or {})},
        sort_keys=True,
        default=str,
        separators=(",", ":"),
    )
    return text_hash(blob)
