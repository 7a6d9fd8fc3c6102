"""Status model: transition legality for requests and certificates.

Request graph:
    draft -> submitted -> under_review -> approved -> issued
                 ^             |  \\
                 |             |   -> rejected
                 |             v
                 +---- changes_requested

    draft, submitted, changes_requested -> cancelled

Certificate graph:
    draft -> pending -> approved -> issued -> revoked
                  \\
                   -> rejected
    draft -> rejected

Expiry is never a transition; it is derived from expires_at at read time.
"""

from __future__ import annotations

from typing import ClassVar

from certflow.core.errors import InvalidTransitionError
from certflow.models.enums import CertificateStatus, RequestStatus


class StatusModel:
    """Closed transition tables for request and certificate statuses."""

    # Valid request transitions: from_status -> allowed to_statuses
    REQUEST_TRANSITIONS: ClassVar[dict[RequestStatus, frozenset[RequestStatus]]] = {
        RequestStatus.DRAFT: frozenset({RequestStatus.SUBMITTED, RequestStatus.CANCELLED}),
        RequestStatus.SUBMITTED: frozenset(
            {RequestStatus.UNDER_REVIEW, RequestStatus.CANCELLED}
        ),
        RequestStatus.UNDER_REVIEW: frozenset(
            {
                RequestStatus.CHANGES_REQUESTED,
                RequestStatus.APPROVED,
                RequestStatus.REJECTED,
            }
        ),
        RequestStatus.CHANGES_REQUESTED: frozenset(
            {RequestStatus.SUBMITTED, RequestStatus.CANCELLED}
        ),
        RequestStatus.APPROVED: frozenset({RequestStatus.ISSUED}),
        # Terminal states - no transitions out
        RequestStatus.ISSUED: frozenset(),
        RequestStatus.REJECTED: frozenset(),
        RequestStatus.CANCELLED: frozenset(),
    }

    CERTIFICATE_TRANSITIONS: ClassVar[
        dict[CertificateStatus, frozenset[CertificateStatus]]
    ] = {
        CertificateStatus.DRAFT: frozenset(
            {CertificateStatus.PENDING, CertificateStatus.REJECTED}
        ),
        CertificateStatus.PENDING: frozenset(
            {CertificateStatus.APPROVED, CertificateStatus.REJECTED}
        ),
        CertificateStatus.APPROVED: frozenset({CertificateStatus.ISSUED}),
        CertificateStatus.ISSUED: frozenset({CertificateStatus.REVOKED}),
        CertificateStatus.REJECTED: frozenset(),
        CertificateStatus.REVOKED: frozenset(),
        # Derived at read time; never entered through a transition
        CertificateStatus.EXPIRED: frozenset(),
    }

    @classmethod
    def _table(
        cls, status: RequestStatus | CertificateStatus
    ) -> dict[RequestStatus, frozenset[RequestStatus]] | dict[
        CertificateStatus, frozenset[CertificateStatus]
    ]:
        if isinstance(status, RequestStatus):
            return cls.REQUEST_TRANSITIONS
        if isinstance(status, CertificateStatus):
            return cls.CERTIFICATE_TRANSITIONS
        msg = f"Unsupported status type: {type(status).__name__}"
        raise TypeError(msg)

    @classmethod
    def can_transition(
        cls,
        from_status: RequestStatus | CertificateStatus,
        to_status: RequestStatus | CertificateStatus,
    ) -> bool:
        """Check whether moving from one status to another is legal.

        Statuses of different families never transition into each other.
        """
        if type(from_status) is not type(to_status):
            return False
        return to_status in cls._table(from_status).get(from_status, frozenset())

    @classmethod
    def is_terminal(cls, status: RequestStatus | CertificateStatus) -> bool:
        """Check whether a status has no outgoing transitions."""
        return not cls._table(status).get(status)

    @classmethod
    def require_transition(
        cls,
        from_status: RequestStatus | CertificateStatus,
        to_status: RequestStatus | CertificateStatus,
    ) -> None:
        """Raise InvalidTransitionError unless the transition is legal."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)


def can_transition(
    from_status: RequestStatus | CertificateStatus,
    to_status: RequestStatus | CertificateStatus,
) -> bool:
    return StatusModel.can_transition(from_status, to_status)


def is_terminal(status: RequestStatus | CertificateStatus) -> bool:
    return StatusModel.is_terminal(status)
