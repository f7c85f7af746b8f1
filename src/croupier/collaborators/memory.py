"""In-memory collaborators: metadata repository, business rules, templates.

They let the pipeline run end to end without a metadata database, either
from Python objects or from a JSON catalog file (see :func:`load_catalog`).
"""

import json
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from croupier.exceptions import ConfigurationError, TemplateError
from croupier.interfaces.collaborators import (
    BusinessRuleService,
    MetadataRepository,
    PromptTemplateStore,
)
from croupier.types import (
    BusinessDomain,
    BusinessRule,
    ColumnMetadata,
    ComplianceRule,
    ExampleQuery,
    JoinEdge,
    PromptTemplate,
    QueryComplexity,
    QueryIntent,
    TableMetadata,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_KEY = "sql_generation"

DEFAULT_TEMPLATE = """You are an expert T-SQL analyst for the {DATABASE_NAME} gambling analytics database.

## QUESTION
{USER_QUESTION}

## DETECTED INTENT
{INTENT}

## RELEVANT SCHEMA
{SCHEMA_DEFINITION}

## JOINS
{JOIN_PATH}

## ENTITIES
{ENTITY_CONTEXT}

## DATE RANGES
{TEMPORAL_CONTEXT}

## BUSINESS CONTEXT
{BUSINESS_DOMAIN_CONTEXT}

## KPI DEFINITIONS
{GAMING_KPI_DEFINITIONS}

{DOMAIN_RULES}

{FINANCIAL_RULES}

{DATE_HANDLING_RULES}

{FRAUD_PREVENTION_RULES}

## COMPLIANCE
{COMPLIANCE_CONTEXT}

## EXAMPLES
{EXAMPLES}

Always filter out test and suspicious accounts: {FRAUD_FILTERS}

{OUTPUT_FORMATTING_RULES}

## CHECKLIST
{VALIDATION_CHECKLIST}

Return a single SELECT statement and nothing else.
"""


class InMemoryMetadataRepository(MetadataRepository):
    def __init__(
        self,
        tables: Iterable[TableMetadata] = (),
        columns: Iterable[ColumnMetadata] = (),
        relationships: Iterable[JoinEdge] = (),
    ):
        self._tables = list(tables)
        self._columns: Dict[str, List[ColumnMetadata]] = {}
        for column in columns:
            self._columns.setdefault(column.table_name, []).append(column)
        self._relationships = list(relationships)

    async def list_tables(self, active_only: bool = True) -> List[TableMetadata]:
        return [t for t in self._tables if t.info.is_active or not active_only]

    async def list_columns(self, table_name: str) -> List[ColumnMetadata]:
        return list(self._columns.get(table_name, []))

    async def search(self, term: str) -> List[TableMetadata]:
        needle = term.lower().strip()
        if not needle:
            return []
        found = []
        for table in self._tables:
            haystack = [table.name, table.info.business_purpose, table.info.domain_classification]
            haystack.extend(table.keywords)
            if any(needle in (h or "").lower() for h in haystack):
                found.append(table)
        return found

    async def list_relationships(self) -> List[JoinEdge]:
        return list(self._relationships)


class InMemoryBusinessRuleService(BusinessRuleService):
    def __init__(
        self,
        rules: Iterable[BusinessRule] = (),
        compliance: Iterable[ComplianceRule] = (),
        examples: Iterable[ExampleQuery] = (),
        domains: Iterable[BusinessDomain] = (),
    ):
        self._rules = list(rules)
        self._compliance = list(compliance)
        self._examples = list(examples)
        self._domains = list(domains)

    async def rules_by_category(
        self, category: str, intent_type: Optional[QueryIntent] = None
    ) -> List[BusinessRule]:
        intent = intent_type.value if intent_type is not None else None
        matching = [
            r
            for r in self._rules
            if r.is_active
            and r.rule_category.lower() == category.lower()
            and (r.intent_type is None or intent is None or r.intent_type == intent)
        ]
        return sorted(matching, key=lambda r: (r.priority, r.rule_name))

    async def compliance_rules(self, jurisdiction: Optional[str] = None) -> List[ComplianceRule]:
        wanted = jurisdiction.lower() if jurisdiction else None
        matching = [
            r
            for r in self._compliance
            if r.is_active
            and (r.jurisdiction is None or wanted is None or r.jurisdiction.lower() == wanted)
        ]
        return sorted(matching, key=lambda r: (r.compliance_type, r.rule_name))

    async def examples(
        self,
        intent_type: Optional[QueryIntent] = None,
        complexity: Optional[QueryComplexity] = None,
        limit: int = 3,
    ) -> List[ExampleQuery]:
        """Validated examples for the intent, closest complexity first."""
        pool = [
            e
            for e in self._examples
            if e.is_active and e.is_validated and (intent_type is None or e.intent_type == intent_type)
        ]
        target = complexity.rank if complexity is not None else 0
        pool.sort(key=lambda e: (abs(e.complexity.rank - target), e.example_key))
        return pool[:limit]

    async def domains(self) -> List[BusinessDomain]:
        return list(self._domains)

    def format_rules(self, rules: List[BusinessRule]) -> str:
        """Markdown-ish block per category, rules ordered by priority."""
        if not rules:
            return ""
        grouped: Dict[str, List[BusinessRule]] = {}
        for rule in rules:
            grouped.setdefault(rule.rule_category, []).append(rule)

        blocks = []
        for category, members in grouped.items():
            lines = [f"## {category.replace('_', ' ').upper()} RULES:"]
            for rule in sorted(members, key=lambda r: (r.priority, r.rule_name)):
                lines.append(f"- **{rule.rule_name}**: {rule.rule_content}")
                if rule.condition:
                    lines.append(f"  - Condition: {rule.condition}")
                if rule.action:
                    lines.append(f"  - Action: {rule.action}")
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks)

    def format_compliance(self, rules: List[ComplianceRule]) -> str:
        if not rules:
            return ""
        lines = []
        for rule in rules:
            scope = f" ({rule.jurisdiction})" if rule.jurisdiction else ""
            lines.append(f"- **{rule.rule_name}** [{rule.compliance_type}{scope}]: {rule.rule_content}")
        return "\n".join(lines)


class InMemoryTemplateStore(PromptTemplateStore):
    """Template store seeded with the default SQL generation template."""

    def __init__(self, templates: Iterable[PromptTemplate] = (), include_default: bool = True):
        self._templates: Dict[str, PromptTemplate] = {}
        if include_default:
            self._templates[DEFAULT_TEMPLATE_KEY] = PromptTemplate(
                template_key=DEFAULT_TEMPLATE_KEY, content=DEFAULT_TEMPLATE
            )
        for template in templates:
            current = self._templates.get(template.template_key)
            if current is None or template.version >= current.version:
                self._templates[template.template_key] = template

    async def template_by_key(self, key: str) -> PromptTemplate:
        template = self._templates.get(key)
        if template is None or not template.is_active:
            raise TemplateError(f"No active prompt template '{key}'")
        return template

    async def template_keys(self) -> List[str]:
        return sorted(k for k, t in self._templates.items() if t.is_active)


def load_catalog(
    file_path: str,
) -> Tuple[InMemoryMetadataRepository, InMemoryBusinessRuleService, InMemoryTemplateStore]:
    """Build the in-memory collaborators from a JSON catalog file.

    Expected top-level keys (all optional): ``tables``, ``columns``,
    ``relationships``, ``business_rules``, ``compliance_rules``,
    ``examples``, ``domains``, ``templates``. Each item follows the
    corresponding model in :mod:`croupier.types`.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        repository = InMemoryMetadataRepository(
            tables=[TableMetadata.model_validate(t) for t in data.get("tables", [])],
            columns=[ColumnMetadata.model_validate(c) for c in data.get("columns", [])],
            relationships=[JoinEdge.model_validate(r) for r in data.get("relationships", [])],
        )
        rules = InMemoryBusinessRuleService(
            rules=[BusinessRule.model_validate(r) for r in data.get("business_rules", [])],
            compliance=[ComplianceRule.model_validate(r) for r in data.get("compliance_rules", [])],
            examples=[ExampleQuery.model_validate(e) for e in data.get("examples", [])],
            domains=[BusinessDomain.model_validate(d) for d in data.get("domains", [])],
        )
        templates = InMemoryTemplateStore(
            [PromptTemplate.model_validate(t) for t in data.get("templates", [])]
        )
    except Exception as e:
        raise ConfigurationError(f"Failed to load catalog from '{file_path}': {e}") from e

    logger.info(
        "Loaded catalog from '%s': %d tables, %d relationships",
        file_path,
        len(data.get("tables", [])),
        len(data.get("relationships", [])),
    )
    return repository, rules, templates
