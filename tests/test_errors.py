"""
Tests for the errors module.
"""

import httpx
import openai
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from listing_pipeline.errors import (
    BatchOutcome,
    DatabaseConnectionError,
    DatabaseConstraintError,
    DatabaseError,
    DatabaseQueryError,
    ListingPipelineError,
    MessageNotFoundError,
    OpenAIConnectionError,
    OpenAIError,
    OpenAIModelError,
    OpenAIRateLimitError,
    PipelineError,
    ValidationError,
    wrap_database_error,
    wrap_openai_error,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class TestErrorHierarchy:
    def test_context_rendered_in_str(self):
        error = MessageNotFoundError("Message not found", context={"message_id": "m1"})

        assert error.message == "Message not found"
        assert str(error) == "Message not found | context={'message_id': 'm1'}"

    def test_without_context(self):
        error = ListingPipelineError("Simple error")

        assert error.context == {}
        assert str(error) == "Simple error"

    def test_inheritance(self):
        assert isinstance(MessageNotFoundError("x"), PipelineError)
        assert isinstance(ValidationError("x"), ListingPipelineError)
        assert isinstance(OpenAIRateLimitError("x"), OpenAIError)
        assert isinstance(OpenAIConnectionError("x"), OpenAIError)
        assert isinstance(DatabaseConstraintError("x"), DatabaseError)


class TestOpenAIErrorWrapping:
    def test_rate_limit(self):
        exc = openai.RateLimitError(
            "Rate limit reached", response=httpx.Response(429, request=REQUEST), body=None
        )

        wrapped = wrap_openai_error(exc)

        assert isinstance(wrapped, OpenAIRateLimitError)
        assert wrapped.context["error_type"] == "RateLimitError"

    def test_timeout_is_connection_error(self):
        wrapped = wrap_openai_error(openai.APITimeoutError(request=REQUEST))

        assert isinstance(wrapped, OpenAIConnectionError)

    def test_unparseable_reply_is_model_error(self):
        wrapped = wrap_openai_error(ValueError("No structured output from gpt-4o-mini: empty reply"))

        assert isinstance(wrapped, OpenAIModelError)

    def test_unknown_error_keeps_caller_context(self):
        wrapped = wrap_openai_error(RuntimeError("boom"), context={"attempt": 3})

        assert type(wrapped) is OpenAIError
        assert wrapped.context["attempt"] == 3
        assert wrapped.context["original_error"] == "boom"


class TestDatabaseErrorWrapping:
    def test_integrity_error_is_constraint(self):
        exc = IntegrityError(
            "INSERT INTO raw_messages",
            {},
            Exception('duplicate key value violates unique constraint "raw_messages_whapi_msg_id_key"'),
        )

        assert isinstance(wrap_database_error(exc), DatabaseConstraintError)

    def test_operational_error_is_connection(self):
        exc = OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

        assert isinstance(wrap_database_error(exc), DatabaseConnectionError)

    def test_other_errors_are_query_errors(self):
        exc = ProgrammingError("SELEC 1", {}, Exception("syntax error at or near SELEC"))

        wrapped = wrap_database_error(exc, context={"sql": "SELEC 1"})

        assert isinstance(wrapped, DatabaseQueryError)
        assert wrapped.context["sql"] == "SELEC 1"


class TestBatchOutcome:
    def test_empty(self):
        outcome = BatchOutcome()

        assert outcome.attempted == 0
        assert outcome.to_dict() == {"completed": 0, "failed": 0, "by_outcome": {}, "failures": {}}

    def test_counts_by_outcome_and_keeps_failures(self):
        outcome = BatchOutcome()
        outcome.record("processed")
        outcome.record("processed")
        outcome.record("blank")
        outcome.record_failure("m4", RuntimeError("model unavailable"))

        assert outcome.completed == 3
        assert outcome.failed == 1
        assert outcome.attempted == 4
        assert outcome.to_dict()["by_outcome"] == {"processed": 2, "blank": 1}
        assert outcome.failures == {"m4": "model unavailable"}
