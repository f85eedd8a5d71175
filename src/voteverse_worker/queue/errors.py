"""Error taxonomy for job processing attempts.

Every class below consumes one unit of a job's retry budget; none is
retried with a different prompt.
"""

from __future__ import annotations


class WorkerError(RuntimeError):
    """Base class for failures raised inside one processing attempt."""


class TransportError(WorkerError):
    """Network or HTTP failure talking to the completion service."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyResponseError(WorkerError):
    """Completion stream closed without usable text."""


class ParseError(WorkerError):
    """Completion text is not a JSON object after fence stripping."""


class SchemaValidationError(WorkerError):
    """Parsed completion misses required fields or holds out-of-range values."""


def describe_error(error: BaseException) -> str:
    """Render an exception for the job row's `error` column."""

    message = str(error).strip() or "unknown error"
    return f"{type(error).__name__}: {message}"
