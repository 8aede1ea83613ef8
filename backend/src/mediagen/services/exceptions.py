"""Service error hierarchy for the generation pipeline.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (rejected requests, validation)

Errors raised on the synchronous submission path reach the caller. Errors in
the asynchronous stages are recorded on the job and never re-raised.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    pass


# Submission / read path errors
class ValidationError(PermanentError):
    """Submission input is invalid. Nothing was mutated."""

    pass


class InsufficientCreditsError(PermanentError):
    """Combined credit balance does not cover the mode's cost. Nothing was mutated."""

    def __init__(self, required: int, available: int | None = None):
        self.required = required
        self.available = available
        message = f"Not enough credits: {required} required"
        if available is not None:
            message += f", {available} available"
        super().__init__(message)


class NotFoundError(PermanentError):
    """Requested job does not exist."""

    pass


class ForbiddenError(PermanentError):
    """Requested job belongs to another owner."""

    pass


# Compute backend errors
class DispatchError(PermanentError):
    """Backend rejected the start request or returned no run id."""

    pass


class TransientPollError(TransientError):
    """Backend unreachable or answered a status check with an error."""

    pass


class GenerationFailedError(PermanentError):
    """Backend reported the run as failed."""

    pass


class GenerationTimeoutError(PermanentError):
    """Poll attempt budget exhausted without a terminal backend status."""

    pass


# Result persistence errors
class MaterializationError(PermanentError):
    """Artifact download or persistence failed after backend success."""

    pass


class StorageError(MaterializationError):
    """Object storage rejected an upload or delete."""

    pass
