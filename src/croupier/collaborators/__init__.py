"""In-memory implementations of the collaborator interfaces."""

from croupier.collaborators.memory import (
    DEFAULT_TEMPLATE,
    DEFAULT_TEMPLATE_KEY,
    InMemoryBusinessRuleService,
    InMemoryMetadataRepository,
    InMemoryTemplateStore,
    load_catalog,
)

__all__ = [
    "DEFAULT_TEMPLATE",
    "DEFAULT_TEMPLATE_KEY",
    "InMemoryBusinessRuleService",
    "InMemoryMetadataRepository",
    "InMemoryTemplateStore",
    "load_catalog",
]
