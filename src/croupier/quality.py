"""QualityScorer: syntax, semantic and completeness scoring of generated SQL."""

import logging
import re
from typing import List, Optional, Sequence, Set

import sqlparse
from sqlparse import tokens as T

from croupier.config import QualityThresholds
from croupier.types import (
    EntityMention,
    EntityType,
    QualityScore,
    QueryIntent,
    SchemaSelection,
)

logger = logging.getLogger(__name__)

SYNTAX_WEIGHT = 0.4
SEMANTIC_WEIGHT = 0.35
COMPLETENESS_WEIGHT = 0.25

_FORBIDDEN = {
    "INSERT", "UPDATE", "DELETE", "MERGE", "DROP", "CREATE", "ALTER", "TRUNCATE",
    "GRANT", "REVOKE", "EXEC", "EXECUTE",
}
_FENCE_RE = re.compile(r"```(?:sql|tsql)?\s*(.*?)```", re.S | re.I)
_TABLE_REF_RE = re.compile(r"\b(?:FROM|JOIN)\s+([\[\]\w.]+)", re.I)
_CTE_RE = re.compile(r"(?:\bWITH|,)\s*([\w\[\]]+)\s+AS\s*\(", re.I)
_AGGREGATE_RE = re.compile(r"\b(?:SUM|COUNT|AVG|MIN|MAX)\s*\(", re.I)
_DATE_FILTER_RE = re.compile(
    r"\bWHERE\b.*(?:date|DATEADD|DATEDIFF|GETDATE|BETWEEN|\d{4}-\d{2}-\d{2})", re.I | re.S
)


def extract_sql(text: str) -> str:
    """The SQL inside a markdown fence if present, else the stripped text."""
    if not text:
        return ""
    match = _FENCE_RE.search(text)
    sql = match.group(1) if match else text
    return sql.strip()


def referenced_tables(sql: str) -> List[str]:
    """Table names after FROM/JOIN, without brackets, schema prefix or CTE names."""
    ctes = {m.group(1).strip("[]").lower() for m in _CTE_RE.finditer(sql)}
    tables = []
    for m in _TABLE_REF_RE.finditer(sql):
        name = m.group(1).split(".")[-1].strip("[]")
        if name and not name.startswith("(") and name.lower() not in ctes and name not in tables:
            tables.append(name)
    return tables


class QualityScorer:
    """Scores a response against the schema selection it was generated for.

    ``overall = 0.4*syntax + 0.35*semantic + 0.25*completeness``
    """

    def score(
        self,
        text: str,
        schema_selection: SchemaSelection,
        intent: Optional[QueryIntent] = None,
        entities: Sequence[EntityMention] = (),
    ) -> QualityScore:
        sql = extract_sql(text)
        issues: List[str] = []
        syntax = self._syntax(sql, issues)
        semantic = self._semantic(sql, schema_selection, issues) if syntax > 0 else 0.0
        completeness = self._completeness(sql, intent, entities, issues) if syntax > 0 else 0.0
        overall = (
            SYNTAX_WEIGHT * syntax
            + SEMANTIC_WEIGHT * semantic
            + COMPLETENESS_WEIGHT * completeness
        )
        return QualityScore(
            syntax_score=round(syntax, 4),
            semantic_score=round(semantic, 4),
            completeness_score=round(completeness, 4),
            overall_score=round(overall, 4),
            issues=issues,
        )

    @staticmethod
    def passes(score: QualityScore, thresholds: QualityThresholds) -> bool:
        return (
            score.syntax_score >= thresholds.min_syntax_score
            and score.semantic_score >= thresholds.min_semantic_score
            and score.overall_score >= thresholds.min_overall_score
        )

    # --- Signals ---

    @staticmethod
    def _syntax(sql: str, issues: List[str]) -> float:
        if not sql:
            issues.append("empty response")
            return 0.0

        statements = [s for s in sqlparse.parse(sql) if s.value.strip(" \t\r\n;")]
        if not statements:
            issues.append("no SQL statement found")
            return 0.0

        for stmt in statements:
            for token in stmt.flatten():
                if token.ttype in (T.Keyword.DML, T.Keyword.DDL, T.Keyword) and token.normalized in _FORBIDDEN:
                    issues.append(f"forbidden operation {token.normalized}")
                    return 0.0

        if statements[0].get_type() != "SELECT":
            issues.append("only SELECT statements are allowed")
            return 0.0

        score = 1.0
        if len(statements) > 1:
            issues.append("multiple statements")
            score -= 0.3
        if sql.count("(") != sql.count(")"):
            issues.append("unbalanced parentheses")
            score -= 0.3
        if sql.count("'") % 2:
            issues.append("unbalanced quotes")
            score -= 0.3
        if not re.search(r"\bFROM\b", sql, re.I):
            issues.append("no FROM clause")
            score -= 0.2
        return max(0.0, score)

    @staticmethod
    def _semantic(sql: str, selection: SchemaSelection, issues: List[str]) -> float:
        if not selection.tables:
            return 0.5
        refs = referenced_tables(sql)
        if not refs:
            issues.append("no tables referenced")
            return 0.0
        selected: Set[str] = {t.table_name.lower() for t in selection.tables}
        unknown = [r for r in refs if r.lower() not in selected]
        for name in unknown:
            issues.append(f"table '{name}' is not in the selected schema")
        fraction = (len(refs) - len(unknown)) / len(refs)
        top_used = selection.tables[0].table_name.lower() in {r.lower() for r in refs}
        return 0.8 * fraction + (0.2 if top_used else 0.0)

    @staticmethod
    def _completeness(
        sql: str,
        intent: Optional[QueryIntent],
        entities: Sequence[EntityMention],
        issues: List[str],
    ) -> float:
        score = 1.0
        upper = sql.upper()
        has_group = "GROUP BY" in upper

        if intent == QueryIntent.AGGREGATE and not _AGGREGATE_RE.search(sql):
            issues.append("aggregate question without an aggregate function")
            score -= 0.4
        elif intent == QueryIntent.TOP_N:
            if not re.search(r"\bTOP\s*\(?\d+|\bLIMIT\s+\d+|\bFETCH\s+FIRST\b", upper):
                issues.append("top-N question without a row limit")
                score -= 0.4
            if "ORDER BY" not in upper:
                issues.append("top-N question without ORDER BY")
                score -= 0.2
        elif intent in (QueryIntent.TREND, QueryIntent.DISTRIBUTION) and not has_group:
            issues.append(f"{intent.value} question without GROUP BY")
            score -= 0.4
        elif intent == QueryIntent.COMPARISON and not (
            has_group or "CASE" in upper or "UNION" in upper
        ):
            issues.append("comparison question without grouping")
            score -= 0.3

        if any(e.entity_type == EntityType.TEMPORAL for e in entities) and not _DATE_FILTER_RE.search(sql):
            issues.append("date range mentioned but no date filter")
            score -= 0.3

        wanted_columns = [
            c.lower()
            for e in entities
            if e.entity_type == EntityType.METRIC and e.subtype == "term"
            for c in e.related_columns
        ]
        if wanted_columns and not any(c in sql.lower() for c in wanted_columns):
            issues.append("metric columns not referenced")
            score -= 0.2

        return max(0.0, score)
