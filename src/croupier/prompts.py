"""PromptAssembler: resolve named placeholders and render the final prompt."""

import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from croupier.config import PromptSettings
from croupier.domain import DEFAULT_DOMAIN_TERMS
from croupier.exceptions import PromptValidationError
from croupier.interfaces.collaborators import BusinessRuleService, PromptTemplateStore
from croupier.types import (
    AssembledPrompt,
    BusinessContext,
    DomainTerm,
    EntityType,
    Query,
    QueryIntent,
    SchemaCatalog,
    SchemaSelection,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([A-Z_]+)\}")

RULE_CATEGORIES = {
    "DOMAIN_RULES": "domain",
    "FINANCIAL_RULES": "financial",
    "DATE_HANDLING_RULES": "date_handling",
    "FRAUD_PREVENTION_RULES": "fraud_prevention",
    "OUTPUT_FORMATTING_RULES": "output_formatting",
}


class PromptRequest(BaseModel):
    """Everything a placeholder resolver may read."""

    model_config = ConfigDict(frozen=True)

    template_key: str
    query: Query
    intent: QueryIntent
    schema_selection: SchemaSelection
    business_context: BusinessContext = Field(default_factory=BusinessContext)


Resolver = Callable[[PromptRequest], Awaitable[str]]


class PromptAssembler:
    """Fill a template's ``{PLACEHOLDER}`` tokens from registered resolvers.

    Assembly fails closed: a placeholder with no resolver, or a mandatory
    placeholder whose resolver returned nothing, makes the whole assembly
    fail with every offending key listed. Optional placeholders that resolve
    to nothing render as empty text.

    Args:
        templates: Template store collaborator.
        rules: Business rule collaborator (rules, compliance, examples).
        settings: Budget, mandatory keys, static placeholders.
        terms: Domain term dictionary for ``GAMING_KPI_DEFINITIONS``.
    """

    def __init__(
        self,
        templates: PromptTemplateStore,
        rules: BusinessRuleService,
        settings: Optional[PromptSettings] = None,
        terms: Optional[List[DomainTerm]] = None,
    ):
        self._templates = templates
        self._rules = rules
        self._settings = settings or PromptSettings()
        self._terms = list(terms if terms is not None else DEFAULT_DOMAIN_TERMS)
        self._catalog: Optional[SchemaCatalog] = None
        self._resolvers: Dict[str, Resolver] = {}
        self._mandatory: Set[str] = set(self._settings.mandatory_placeholders)
        self._register_builtins()

    # --- Registry ---

    def register(self, key: str, resolver: Resolver, mandatory: bool = False) -> None:
        """Register (or replace) the resolver for ``{key}``."""
        if not PLACEHOLDER_RE.fullmatch("{" + key + "}"):
            raise ValueError(f"Placeholder keys are upper-case words, got '{key}'")
        self._resolvers[key] = resolver
        if mandatory:
            self._mandatory.add(key)

    @property
    def placeholders(self) -> List[str]:
        return sorted(self._resolvers)

    def set_catalog(self, catalog: Optional[SchemaCatalog]) -> None:
        """Catalog used to describe selected tables and columns."""
        self._catalog = catalog

    # --- Assembly ---

    async def assemble(
        self,
        template_key: str,
        query: Query,
        intent: QueryIntent,
        schema_selection: SchemaSelection,
        business_context: Optional[BusinessContext] = None,
    ) -> AssembledPrompt:
        """Render the template for one request.

        Raises:
            TemplateError: Unknown template key.
            PromptValidationError: Missing placeholders or prompt over budget.
            MetadataUnavailable: A collaborator failed while resolving.
        """
        template = await self._templates.template_by_key(template_key)
        request = PromptRequest(
            template_key=template_key,
            query=query,
            intent=intent,
            schema_selection=schema_selection,
            business_context=business_context or BusinessContext(),
        )
        overrides = request.business_context.additional
        mandatory = self._mandatory | set(template.mandatory_placeholders)

        values: Dict[str, str] = {}
        missing: List[str] = []
        empty_optional: List[str] = []
        for key in dict.fromkeys(PLACEHOLDER_RE.findall(template.content)):
            if key in overrides:
                content = overrides[key]
            elif key in self._resolvers:
                content = await self._resolvers[key](request)
            else:
                missing.append(key)
                continue
            content = (content or "").strip()
            if not content:
                if key in mandatory:
                    missing.append(key)
                    continue
                empty_optional.append(key)
            values[key] = content

        if missing:
            raise PromptValidationError(
                f"Template '{template_key}' has unresolved placeholders: {', '.join(missing)}",
                missing=missing,
            )

        text = PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], template.content)
        if len(text) > self._settings.max_prompt_chars:
            raise PromptValidationError(
                f"Prompt for '{template_key}' is {len(text)} chars, "
                f"budget is {self._settings.max_prompt_chars}",
                over_budget=True,
                size=len(text),
            )

        logger.debug(
            "Assembled prompt '%s': %d chars, %d placeholders, empty optional=%s",
            template_key,
            len(text),
            len(values),
            empty_optional,
        )
        return AssembledPrompt(
            template_key=template_key,
            text=text,
            resolved=list(values),
            empty_optional=empty_optional,
        )

    async def validate_template(self, template_key: str) -> List[str]:
        """Placeholders of *template_key* that no resolver can fill."""
        template = await self._templates.template_by_key(template_key)
        return [
            key
            for key in dict.fromkeys(PLACEHOLDER_RE.findall(template.content))
            if key not in self._resolvers
        ]

    # --- Built-in resolvers ---

    def _register_builtins(self) -> None:
        self.register("USER_QUESTION", self._user_question, mandatory=True)
        self.register("DATABASE_NAME", self._database_name)
        self.register("INTENT", self._intent)
        self.register("SCHEMA_DEFINITION", self._schema_definition, mandatory=True)
        self.register("JOIN_PATH", self._join_path)
        self.register("ENTITY_CONTEXT", self._entity_context)
        self.register("TEMPORAL_CONTEXT", self._temporal_context)
        self.register("BUSINESS_DOMAIN_CONTEXT", self._business_domain_context)
        self.register("COMPLIANCE_CONTEXT", self._compliance_context)
        self.register("EXAMPLES", self._examples)
        self.register("GAMING_KPI_DEFINITIONS", self._kpi_definitions)
        for key, category in RULE_CATEGORIES.items():
            self.register(key, self._rules_resolver(category))
        for key, text in self._settings.static_placeholders.items():
            self.register(key, self._static(text))

    @staticmethod
    def _static(text: str) -> Resolver:
        async def resolve(request: PromptRequest) -> str:
            return text

        return resolve

    def _rules_resolver(self, category: str) -> Resolver:
        async def resolve(request: PromptRequest) -> str:
            rules = await self._rules.rules_by_category(category, request.intent)
            return self._rules.format_rules(rules) if rules else ""

        return resolve

    async def _user_question(self, request: PromptRequest) -> str:
        return request.query.raw_text

    async def _database_name(self, request: PromptRequest) -> str:
        return self._settings.database_name

    async def _intent(self, request: PromptRequest) -> str:
        return request.intent.value

    async def _schema_definition(self, request: PromptRequest) -> str:
        selection = request.schema_selection
        tables = {t.name: t for t in self._catalog.tables} if self._catalog else {}
        columns = {}
        if self._catalog is not None:
            for cols in self._catalog.columns.values():
                for c in cols:
                    columns[c.identifier] = c

        blocks = []
        for table in selection.tables:
            meta = tables.get(table.table_name)
            lines = [f"### {table.table_name} (relevance {table.score:.2f})"]
            if meta is not None and meta.info.business_purpose:
                lines.append(f"Purpose: {meta.info.business_purpose}")
            for col in selection.columns_for(table.table_name):
                cmeta = columns.get(col.subject)
                line = f"- {col.column_name}"
                if cmeta is not None and cmeta.info.data_type:
                    line += f" {cmeta.info.data_type}"
                if cmeta is not None and cmeta.info.business_meaning:
                    line += f": {cmeta.info.business_meaning}"
                lines.append(line)
            blocks.append("\n".join(lines))
        if selection.degraded:
            blocks.append("(Schema ranked by keyword match only.)")
        return "\n\n".join(blocks)

    async def _join_path(self, request: PromptRequest) -> str:
        ctx = request.business_context
        parts = []
        if ctx.join_path is not None and ctx.join_path.steps:
            parts.append(ctx.join_path.render())
        for note in ctx.ambiguities:
            parts.append(f"NOTE: {note}")
        return "\n".join(parts)

    async def _entity_context(self, request: PromptRequest) -> str:
        return "\n".join(
            f"- {e.entity_type.value}: '{e.text}' -> {e.normalized_value} "
            f"(confidence {e.confidence:.2f})"
            for e in request.business_context.entities
            if e.entity_type != EntityType.TEMPORAL
        )

    async def _temporal_context(self, request: PromptRequest) -> str:
        lines = [
            f"- '{e.text}': {e.temporal_range.describe()}"
            for e in request.business_context.entities
            if e.entity_type == EntityType.TEMPORAL and e.temporal_range is not None
        ]
        if lines:
            lines.insert(0, f"Reference date: {request.query.today.isoformat()}")
        return "\n".join(lines)

    async def _business_domain_context(self, request: PromptRequest) -> str:
        domains = await self._rules.domains()
        blocks = []
        for d in domains:
            block = f"## {d.name}\n{d.description}"
            if d.key_concepts:
                block += f"\nKey concepts: {', '.join(d.key_concepts)}"
            blocks.append(block)
        return "\n\n".join(blocks)

    async def _compliance_context(self, request: PromptRequest) -> str:
        jurisdiction = request.business_context.jurisdiction or self._settings.jurisdiction
        rules = await self._rules.compliance_rules(jurisdiction)
        return self._rules.format_compliance(rules) if rules else ""

    async def _examples(self, request: PromptRequest) -> str:
        if self._settings.max_examples == 0:
            return ""
        examples = await self._rules.examples(
            request.intent, request.query.complexity, limit=self._settings.max_examples
        )
        return "\n\n".join(
            f"Question: {ex.natural_language_query}\nSQL:\n{ex.sql_query.strip()}"
            for ex in examples
        )

    async def _kpi_definitions(self, request: PromptRequest) -> str:
        mentioned = {e.normalized_value for e in request.business_context.entities}
        terms = [t for t in self._terms if t.key in mentioned]
        if not terms:
            terms = [t for t in self._terms if t.entity_type == EntityType.METRIC]
        lines = []
        for t in terms:
            line = f"- {t.key.upper()} ({t.canonical}): {t.definition}"
            if t.formula:
                line += f" Formula: {t.formula}"
            lines.append(line)
        return "\n".join(lines)
