"""Error taxonomy for the course lifecycle and progress ledger.

Every error the core raises to its caller derives from CourseCoreError,
so the HTTP layer can translate the whole family in one place.  The
errors are raised before any record is written; a caller that catches
one can assume nothing changed.

DownstreamFailure is the odd one out: it is never raised to the caller.
The side-effect batch wraps certificate / achievement / audit failures
in it so they can be logged and reported alongside a successful result.
"""

from __future__ import annotations


class CourseCoreError(Exception):
    """Base class for errors surfaced to the API-layer caller."""


class NotFoundError(CourseCoreError):
    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class InvalidStateTransitionError(CourseCoreError):
    def __init__(self, from_status: str, attempted: str) -> None:
        super().__init__(f"cannot {attempted} a course in status {from_status!r}")
        self.from_status = from_status
        self.attempted = attempted


class PermissionDeniedError(CourseCoreError):
    pass


class ValidationError(CourseCoreError, ValueError):
    pass


class CompletionPolicyViolationError(CourseCoreError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NoActiveAttemptError(CourseCoreError):
    pass


class ConcurrencyConflictError(CourseCoreError):
    """A versioned write lost the race against another writer."""

    def __init__(self, key: str, expected_version: int) -> None:
        super().__init__(f"version conflict on {key} (expected v{expected_version})")
        self.key = key
        self.expected_version = expected_version


class DownstreamFailure(Exception):
    """A best-effort side effect failed after the core write committed."""

    def __init__(self, effect: str, cause: BaseException) -> None:
        super().__init__(f"{effect} failed: {cause}")
        self.effect = effect
        self.cause = cause
