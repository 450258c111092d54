"""
Exceptions for the listing pipeline.

Every error carries a context dict that is rendered into its message, so a
failure recorded on a raw message still says which message, SQL statement or
model call it came from. Third-party errors from the OpenAI SDK and
SQLAlchemy are mapped onto this hierarchy by the wrap_* helpers.
"""

from dataclasses import dataclass, field
from typing import Any

import openai
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError


class ListingPipelineError(Exception):
    """Base exception for all listing pipeline errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(ListingPipelineError):
    """Base class for client-related errors."""


class OpenAIError(ClientError):
    """Error from OpenAI API calls."""


class OpenAIRateLimitError(OpenAIError):
    """Rate limit exceeded on OpenAI API."""


class OpenAIConnectionError(OpenAIError):
    """OpenAI could not be reached or timed out."""


class OpenAIModelError(OpenAIError):
    """Model refused, was cut off, or returned output that does not fit the schema."""


class DatabaseError(ClientError):
    """Error from Postgres operations."""


class DatabaseConnectionError(DatabaseError):
    """Failed to connect to Postgres."""


class DatabaseQueryError(DatabaseError):
    """Error executing a SQL statement."""


class DatabaseConstraintError(DatabaseError):
    """Constraint violation (e.g., duplicate unique key, missing FK target)."""


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(ListingPipelineError):
    """Base class for pipeline-related errors."""


class ValidationError(PipelineError):
    """Input or configuration validation failed."""


class MessageNotFoundError(PipelineError):
    """The requested raw message does not exist."""


# =============================================================================
# Catchup Outcomes
# =============================================================================


@dataclass
class BatchOutcome:
    """
    Tally of a catchup run, one entry per message attempted.

    A failed message does not stop the run: its error text is kept here and
    the message stays unprocessed for the next run.
    """

    outcomes: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    def record(self, outcome: str) -> None:
        """Count a message that completed (processed, blank, sold_reply, ...)."""
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def record_failure(self, message_id: str, error: Exception) -> None:
        self.failures[message_id] = str(error)

    @property
    def completed(self) -> int:
        return sum(self.outcomes.values())

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def attempted(self) -> int:
        return self.completed + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            'completed': self.completed,
            'failed': self.failed,
            'by_outcome': dict(self.outcomes),
            'failures': dict(self.failures),
        }


# =============================================================================
# Error Handling Utilities
# =============================================================================


def _with_origin(exc: Exception, context: dict[str, Any] | None) -> dict[str, Any]:
    return {**(context or {}), 'original_error': str(exc), 'error_type': type(exc).__name__}


def wrap_openai_error(exc: Exception, context: dict[str, Any] | None = None) -> OpenAIError:
    """
    Map an exception from the OpenAI SDK (or from parsing its reply) onto the
    OpenAIError hierarchy.

    Rate limits and connection failures get their own classes so callers can
    tell "try later" apart from "this message cannot be extracted".
    """
    ctx = _with_origin(exc, context)

    if isinstance(exc, openai.RateLimitError):
        return OpenAIRateLimitError(f'OpenAI rate limit exceeded: {exc}', context=ctx)
    if isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError)):
        return OpenAIConnectionError(f'OpenAI unreachable: {exc}', context=ctx)
    if isinstance(
        exc,
        (
            openai.BadRequestError,
            openai.LengthFinishReasonError,
            openai.ContentFilterFinishReasonError,
            ValueError,
        ),
    ):
        return OpenAIModelError(f'OpenAI returned no usable extraction: {exc}', context=ctx)
    return OpenAIError(f'OpenAI API error: {exc}', context=ctx)


def wrap_database_error(exc: Exception, context: dict[str, Any] | None = None) -> DatabaseError:
    """Map a SQLAlchemy (or driver-level) exception onto the DatabaseError hierarchy."""
    ctx = _with_origin(exc, context)

    if isinstance(exc, IntegrityError):
        return DatabaseConstraintError(f'Postgres constraint violation: {exc}', context=ctx)
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, OSError)):
        return DatabaseConnectionError(f'Postgres connection failed: {exc}', context=ctx)
    return DatabaseQueryError(f'Postgres query error: {exc}', context=ctx)
