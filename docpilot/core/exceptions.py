"""Custom exception hierarchy for docpilot.

All exceptions inherit from DocPilotError so callers can catch broadly
or narrowly as needed.
"""

from __future__ import annotations

import enum


class DocPilotError(Exception):
    """Base exception for all docpilot errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(DocPilotError):
    """Invalid or missing configuration."""


# ---------------------------------------------------------------------------
# Transport (model and storage calls that fail outright)
# ---------------------------------------------------------------------------

class TransportError(DocPilotError):
    """A model or store call failed outright."""


class LLMError(TransportError):
    """Failed LLM operation."""


class RateLimitError(LLMError):
    """Hit API rate limit."""


class AuthenticationError(LLMError):
    """Invalid API key or unauthorized."""


class ModelNotFoundError(LLMError):
    """Requested model not available."""


class DatabaseError(TransportError):
    """Failed database operation."""


class SchemaInitError(DatabaseError):
    """Failed to initialize database schema."""


class ConnectionError(DatabaseError):
    """Failed to connect to database."""


# ---------------------------------------------------------------------------
# Document operations
# ---------------------------------------------------------------------------

class ErrorKind(str, enum.Enum):
    PARAMETER = "parameter"
    RANGE = "range"
    NOT_FOUND = "not_found"
    STORE = "store"


# Substrings the retry classifier looks for when a failure carries no kind.
RANGE_ERROR_MARKERS: tuple[str, ...] = ("line out of range", "invalid line")


class OperationError(DocPilotError):
    """A document operation was rejected or failed."""

    kind: ErrorKind = ErrorKind.STORE


class ParameterError(OperationError):
    """Missing, empty or undersupplied operation arguments."""

    kind = ErrorKind.PARAMETER


class RangeError(OperationError):
    """Invalid or out-of-bounds line range."""

    kind = ErrorKind.RANGE


class NotFoundError(OperationError):
    """Unknown document or unknown operation name."""

    kind = ErrorKind.NOT_FOUND


# ---------------------------------------------------------------------------
# Model output
# ---------------------------------------------------------------------------

class ParseError(DocPilotError):
    """Model output could not be read as the expected structure."""


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class WorkflowError(DocPilotError):
    """Orchestrator failure."""


class WorkflowStateError(WorkflowError):
    """Illegal state transition or call made in the wrong state."""


class LedgerError(WorkflowError):
    """Transaction ledger misuse (e.g. nested begin)."""


class TerminalWorkflowError(WorkflowError):
    """Retry budget exhausted; the run cannot continue."""

    def __init__(self, operation: str, retry_count: int, last_error: str):
        self.operation = operation
        self.retry_count = retry_count
        self.last_error = last_error
        super().__init__(
            f"Operation '{operation}' failed {retry_count} times: {last_error}"
        )
