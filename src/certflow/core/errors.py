"""Error taxonomy for the workflow engine.

Every error carries structured attributes (field names, current vs.
attempted status) so that callers can render a user-facing message.
Only ConcurrentModificationError is meant to be retried automatically.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class FieldViolation:
    """A single validation failure.

    Attributes:
        field: Name of the offending field.
        message: Human-readable description of the problem.
    """

    field: str
    message: str


class CertflowError(Exception):
    """Base exception for all engine errors."""

    is_retryable: bool = False


class ValidationError(CertflowError):
    """Raised when required fields are missing or malformed.

    Carries the complete list of violations, not only the first one.
    """

    def __init__(self, violations: list[FieldViolation]) -> None:
        self.violations = list(violations)
        summary = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        super().__init__(f"Validation failed: {summary}")

    @property
    def fields(self) -> list[str]:
        """Names of the fields that failed validation."""
        return [v.field for v in self.violations]

    @classmethod
    def single(cls, field: str, message: str) -> ValidationError:
        return cls([FieldViolation(field=field, message=message)])

    @classmethod
    def from_pairs(cls, pairs: list[tuple[str, str]]) -> ValidationError:
        return cls([FieldViolation(field=field, message=message) for field, message in pairs])


def _label(state: Any) -> str:
    return state.value if isinstance(state, Enum) else str(state)


class InvalidTransitionError(CertflowError):
    """Raised when a status change outside the legal graph is attempted."""

    def __init__(
        self,
        from_state: Any,
        to_state: Any,
        reason: str | None = None,
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or (
            f"Cannot transition from {_label(from_state)} to {_label(to_state)}"
        )
        super().__init__(self.reason)


class PreconditionFailedError(CertflowError):
    """Raised when an operation is invoked while its guard is not met.

    This signals a programming error in the caller, not a user error.
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation}: {reason}")


class AlreadyFinalizedError(InvalidTransitionError):
    """Raised when a mutation is attempted on a terminal entity.

    A terminal entity has no outgoing transitions, so this is the most
    specific form of InvalidTransitionError.
    """

    def __init__(self, entity_id: str, status: Any, to_state: Any = None) -> None:
        self.entity_id = entity_id
        self.status = status
        super().__init__(
            status,
            to_state,
            reason=f"{entity_id} is already finalized ({_label(status)})",
        )


class ShareAccessError(CertflowError):
    """Base exception for share-token access failures."""

    def __init__(self, token_prefix: str, message: str) -> None:
        self.token_prefix = token_prefix
        super().__init__(message)


class TokenInvalidError(ShareAccessError):
    """Raised when a token is unknown, revoked, or its target is inactive."""

    def __init__(self, token_prefix: str, reason: str = "token is not active") -> None:
        self.reason = reason
        super().__init__(token_prefix, f"Share token {token_prefix}... is invalid: {reason}")


class TokenExpiredError(ShareAccessError):
    """Raised when a token is used at or after its expiry."""

    def __init__(self, token_prefix: str, expires_at: Any) -> None:
        self.expires_at = expires_at
        super().__init__(token_prefix, f"Share token {token_prefix}... expired at {expires_at}")


class TokenExhaustedError(ShareAccessError):
    """Raised when a token has used up its access limit."""

    def __init__(self, token_prefix: str, max_access: int) -> None:
        self.max_access = max_access
        super().__init__(
            token_prefix,
            f"Share token {token_prefix}... reached its access limit of {max_access}",
        )


class PasswordRequiredError(ShareAccessError):
    """Raised when a password-protected token is used without a password."""

    def __init__(self, token_prefix: str) -> None:
        super().__init__(token_prefix, f"Share token {token_prefix}... requires a password")


class PasswordMismatchError(ShareAccessError):
    """Raised when the supplied token password is wrong."""

    def __init__(self, token_prefix: str) -> None:
        super().__init__(token_prefix, f"Incorrect password for share token {token_prefix}...")


class ConcurrentModificationError(CertflowError):
    """Raised when the optimistic-concurrency guard trips.

    The caller should reload the entity and retry.
    """

    is_retryable = True

    def __init__(
        self,
        collection: str,
        document_id: str,
        expected_version: int | None = None,
    ) -> None:
        self.collection = collection
        self.document_id = document_id
        self.expected_version = expected_version
        super().__init__(
            f"{collection}/{document_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class EntityNotFoundError(CertflowError):
    """Raised when a document does not exist in the store."""

    def __init__(self, collection: str, document_id: str) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"{collection}/{document_id} not found")
