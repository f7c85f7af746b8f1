"""Contracts for the external collaborators the pipeline consumes."""

from abc import ABC, abstractmethod
from typing import List, Optional

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


class MetadataRepository(ABC):
    """Read-only access to the annotated schema catalog.

    All methods raise ``MetadataUnavailable`` when the underlying store
    cannot be reached. Callers never retry these locally.
    """

    @abstractmethod
    async def list_tables(self, active_only: bool = True) -> List[TableMetadata]:
        ...

    @abstractmethod
    async def list_columns(self, table_name: str) -> List[ColumnMetadata]:
        ...

    @abstractmethod
    async def search(self, term: str) -> List[TableMetadata]:
        """Tables whose name, purpose or keywords mention *term*."""
        ...

    @abstractmethod
    async def list_relationships(self) -> List[JoinEdge]:
        """Declared relationships between tables."""
        ...


class BusinessRuleService(ABC):
    """Domain knowledge: business rules, compliance rules, examples.

    Formatting of rules for prompt inclusion belongs to this collaborator.
    """

    @abstractmethod
    async def rules_by_category(
        self, category: str, intent_type: Optional[QueryIntent] = None
    ) -> List[BusinessRule]:
        ...

    @abstractmethod
    async def compliance_rules(self, jurisdiction: Optional[str] = None) -> List[ComplianceRule]:
        ...

    @abstractmethod
    async def examples(
        self,
        intent_type: Optional[QueryIntent] = None,
        complexity: Optional[QueryComplexity] = None,
        limit: int = 3,
    ) -> List[ExampleQuery]:
        """Validated example question/SQL pairs, best matches first."""
        ...

    @abstractmethod
    async def domains(self) -> List[BusinessDomain]:
        ...

    @abstractmethod
    def format_rules(self, rules: List[BusinessRule]) -> str:
        ...

    @abstractmethod
    def format_compliance(self, rules: List[ComplianceRule]) -> str:
        ...


class PromptTemplateStore(ABC):
    """Lookup of prompt templates by key."""

    @abstractmethod
    async def template_by_key(self, key: str) -> PromptTemplate:
        """Return the active template for *key*.

        Raises:
            TemplateError: If no active template exists for *key*.
        """
        ...

    @abstractmethod
    async def template_keys(self) -> List[str]:
        ...
