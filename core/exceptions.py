"""
Domain-specific exception hierarchy for the metric stream.

Exception hierarchy follows the failure taxonomy of the pipeline:
- Per-record failures (malformed rows, unknown tables) are recovered locally
- Source failures are fatal to the pipeline and surface to its owner
- Shutdown failures surface to the caller of stop()
"""


# ============================================================================
# Base Exception Hierarchy
# ============================================================================


class MetricStreamError(Exception):
    """
    Base exception for all metric stream errors.
    """

    def __init__(self, message: str, details: dict = None):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error description
            details: Additional context for debugging (table, topic, field, etc.)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ============================================================================
# Operational Error Categories (transient vs permanent)
# ============================================================================


class TransientError(MetricStreamError):
    """
    Error that may clear up on its own (slow consumer, flaky source connection).
    """
    pass


class PermanentError(MetricStreamError):
    """
    Error that will not succeed on retry without fixing input or configuration.
    """
    pass


# ============================================================================
# Record Errors (recovered per record, never propagated by the dispatcher)
# ============================================================================


class RecordError(PermanentError):
    """
    Base for failures tied to a single change record.

    RECOVERY: The record is dropped and logged; the stream keeps flowing.
    """
    pass


class MalformedRecordError(RecordError):
    """
    Change record is missing expected fields or carries mistyped values.

    SEEN: Unparsable timestamp strings, integer columns delivered as text,
    a delete event arriving without any row image.

    RECOVERY: Fix the producer schema; nothing to do on the consumer side.
    """
    pass


# ============================================================================
# Lifecycle Errors
# ============================================================================


class SourceError(TransientError):
    """
    The change record source failed fatally.

    This is the only condition that terminates the pipeline.

    RECOVERY: Restart the pipeline once the upstream connection is back.
    """
    pass


class ShutdownError(MetricStreamError):
    """
    Releasing source resources failed during stop().

    RECOVERY: Not retried automatically. Inspect the cause and release manually.
    """
    pass


class HubClosedError(PermanentError):
    """
    Subscribe was attempted on a broadcast hub that has been shut down.
    """
    pass


class ConfigurationError(PermanentError):
    """
    Settings are inconsistent (duplicate table names, non-positive sizes).
    """
    pass


# ============================================================================
# Exception Helpers
# ============================================================================


def is_retryable(error: Exception) -> bool:
    """
    Check if error is transient and the operation may be retried.

    Returns:
        True if error is transient, False if permanent.
    """
    return isinstance(error, TransientError)


def is_record_error(error: Exception) -> bool:
    """Check if error only concerns a single change record."""
    return isinstance(error, RecordError)
