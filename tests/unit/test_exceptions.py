"""Unit tests for croupier.exceptions hierarchy."""

import pytest

from croupier.exceptions import (
    CacheError,
    ConfigurationError,
    CroupierError,
    EmbeddingError,
    EmbeddingUnavailable,
    ExtractionError,
    MetadataUnavailable,
    PromptValidationError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderResponseError,
    ProvidersExhausted,
    ProviderServerError,
    ProviderTimeout,
    QualityGateFailure,
    SchemaResolutionError,
    StorageError,
    StorageInitializationError,
    TemplateError,
)


class TestExceptionHierarchy:
    def test_all_catchable_via_croupier_error(self):
        exceptions = [
            ConfigurationError("cfg"),
            EmbeddingError("emb"),
            EmbeddingUnavailable("down"),
            StorageError("store"),
            StorageInitializationError("init"),
            MetadataUnavailable("meta"),
            TemplateError("tpl"),
            ExtractionError("empty"),
            SchemaResolutionError("schema"),
            PromptValidationError("prompt"),
            ProviderError("provider"),
            ProvidersExhausted("exhausted"),
            QualityGateFailure("quality"),
        ]
        for exc in exceptions:
            with pytest.raises(CroupierError):
                raise exc

    def test_storage_errors_are_cache_errors(self):
        with pytest.raises(CacheError):
            raise StorageInitializationError("init failed")

    def test_embedding_unavailable_is_embedding_error(self):
        with pytest.raises(EmbeddingError):
            raise EmbeddingUnavailable("down")

    def test_exception_messages(self):
        assert str(ConfigurationError("bad config")) == "bad config"


class TestProviderErrors:
    @pytest.mark.parametrize(
        "cls, transient, outcome",
        [
            (ProviderTimeout, True, "timeout"),
            (ProviderRateLimited, True, "rate_limited"),
            (ProviderServerError, True, "error"),
            (ProviderAuthError, False, "error"),
            (ProviderResponseError, False, "error"),
            (ProviderError, False, "error"),
        ],
    )
    def test_transient_and_outcome(self, cls, transient, outcome):
        exc = cls("boom", provider_id="p1")
        assert exc.transient is transient
        assert exc.outcome == outcome
        assert exc.provider_id == "p1"

    def test_exhausted_carries_attempts(self):
        exc = ProvidersExhausted("all failed", attempts=["a", "b"], best_rejected="b")
        assert exc.attempts == ["a", "b"]
        assert exc.best_rejected == "b"

    def test_exhausted_defaults(self):
        exc = ProvidersExhausted("none")
        assert exc.attempts == []
        assert exc.best_rejected is None


class TestDiagnosticErrors:
    def test_schema_resolution_defaults(self):
        exc = SchemaResolutionError("nothing relevant")
        assert exc.reason == SchemaResolutionError.NO_RELEVANT_SCHEMA
        assert exc.ambiguities == []

    def test_schema_resolution_ambiguities(self):
        exc = SchemaResolutionError(
            "cannot join",
            reason=SchemaResolutionError.AMBIGUOUS_JOIN,
            ambiguities=("a | b",),
        )
        assert exc.reason == "ambiguous_join"
        assert exc.ambiguities == ["a | b"]

    def test_prompt_validation_lists_missing(self):
        exc = PromptValidationError("missing", missing=["SCHEMA_DEFINITION"])
        assert exc.missing == ["SCHEMA_DEFINITION"]
        assert exc.over_budget is False

    def test_prompt_validation_over_budget(self):
        exc = PromptValidationError("too long", over_budget=True, size=99)
        assert exc.over_budget is True
        assert exc.size == 99
