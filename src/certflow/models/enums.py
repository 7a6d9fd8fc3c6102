"""Closed enumerations shared across the engine.

This module provides:
- Status and action enums for requests, certificates and documents
- Display-label lookup tables, kept apart from any transition rule
- Priority bounds for certificate requests

Transition legality lives in certflow.services.status; nothing here
decides whether a state change is allowed.
"""

from __future__ import annotations

from enum import Enum

MIN_PRIORITY = 1
MAX_PRIORITY = 5
DEFAULT_PRIORITY = 3


class RequestStatus(str, Enum):
    """Certificate request workflow states.

    States:
        DRAFT: Being created or edited by the client
        SUBMITTED: Handed in, waiting for a reviewer
        UNDER_REVIEW: A reviewer is working on it
        CHANGES_REQUESTED: Returned to the client for edits
        APPROVED: Accepted, waiting for certificate issuance
        REJECTED: Declined (terminal)
        ISSUED: A certificate exists for it (terminal)
        CANCELLED: Withdrawn by client or admin (terminal)
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    CANCELLED = "cancelled"

    @property
    def can_edit(self) -> bool:
        """Whether the client may still edit request content."""
        return self in (RequestStatus.DRAFT, RequestStatus.CHANGES_REQUESTED)

    @property
    def is_active(self) -> bool:
        """Whether the request is still moving through the workflow."""
        return not self.is_completed

    @property
    def requires_review(self) -> bool:
        """Whether the request is waiting on a reviewer."""
        return self in (RequestStatus.SUBMITTED, RequestStatus.UNDER_REVIEW)

    @property
    def is_completed(self) -> bool:
        """Whether the request reached a final disposition."""
        return self in (RequestStatus.ISSUED, RequestStatus.REJECTED, RequestStatus.CANCELLED)


class ApprovalAction(str, Enum):
    """Actions a reviewer can record against a request."""

    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes_requested"
    ASSIGNED = "assigned"
    FORWARDED = "forwarded"
    INFO_REQUESTED = "info_requested"

    @property
    def is_positive(self) -> bool:
        return self in (ApprovalAction.APPROVED, ApprovalAction.ASSIGNED)

    @property
    def is_negative(self) -> bool:
        return self is ApprovalAction.REJECTED


# Older records and UI forms use verbs and camelCase spellings
_LEGACY_ACTIONS: dict[str, ApprovalAction] = {
    "approve": ApprovalAction.APPROVED,
    "reject": ApprovalAction.REJECTED,
    "request_changes": ApprovalAction.CHANGES_REQUESTED,
    "changesrequested": ApprovalAction.CHANGES_REQUESTED,
    "assign": ApprovalAction.ASSIGNED,
    "forward": ApprovalAction.FORWARDED,
    "inforequested": ApprovalAction.INFO_REQUESTED,
    "request_info": ApprovalAction.INFO_REQUESTED,
}


def parse_approval_action(value: str | ApprovalAction) -> ApprovalAction:
    """Parse an approval action from its current or legacy spelling.

    Raises:
        ValueError: If the value names no known action.
    """
    if isinstance(value, ApprovalAction):
        return value
    normalized = value.strip().lower()
    if normalized in _LEGACY_ACTIONS:
        return _LEGACY_ACTIONS[normalized]
    return ApprovalAction(normalized)


class CertificateStatus(str, Enum):
    """Issued certificate workflow states.

    REVOKED and EXPIRED are retained for records written by older
    clients; current code records revocation as a flag and derives
    expiry from expires_at.
    """

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    REVOKED = "revoked"
    EXPIRED = "expired"


class CertificateType(str, Enum):
    ACADEMIC = "academic"
    PROFESSIONAL = "professional"
    ACHIEVEMENT = "achievement"
    COMPLETION = "completion"
    PARTICIPATION = "participation"
    RECOGNITION = "recognition"
    CUSTOM = "custom"


class CertificateVerificationLevel(str, Enum):
    BASIC = "basic"
    ENHANCED = "enhanced"
    BIOMETRIC = "biometric"
    BLOCKCHAIN = "blockchain"


class DocumentVerificationLevel(str, Enum):
    """Assurance level of a document check, in ascending strength."""

    BASIC = "basic"
    STANDARD = "standard"
    ENHANCED = "enhanced"
    CERTIFIED = "certified"

    @property
    def rank(self) -> int:
        return _DOCUMENT_LEVEL_ORDER.index(self)


_DOCUMENT_LEVEL_ORDER = list(DocumentVerificationLevel)


class VerificationAction(str, Enum):
    VERIFY = "verify"
    REJECT = "reject"
    REQUEST_INFO = "request_info"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class ApprovalStepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ShareTarget(str, Enum):
    """Kind of resource a share token grants access to."""

    CERTIFICATE = "certificate"
    DOCUMENT = "document"


# =============================================================================
# Display labels
# =============================================================================

REQUEST_STATUS_LABELS: dict[RequestStatus, str] = {
    RequestStatus.DRAFT: "Draft",
    RequestStatus.SUBMITTED: "Submitted",
    RequestStatus.UNDER_REVIEW: "Under Review",
    RequestStatus.CHANGES_REQUESTED: "Changes Requested",
    RequestStatus.APPROVED: "Approved",
    RequestStatus.REJECTED: "Rejected",
    RequestStatus.ISSUED: "Issued",
    RequestStatus.CANCELLED: "Cancelled",
}

APPROVAL_ACTION_LABELS: dict[ApprovalAction, str] = {
    ApprovalAction.APPROVED: "Approved",
    ApprovalAction.REJECTED: "Rejected",
    ApprovalAction.CHANGES_REQUESTED: "Changes Requested",
    ApprovalAction.ASSIGNED: "Assigned",
    ApprovalAction.FORWARDED: "Forwarded",
    ApprovalAction.INFO_REQUESTED: "Information Requested",
}

CERTIFICATE_STATUS_LABELS: dict[CertificateStatus, str] = {
    CertificateStatus.DRAFT: "Draft",
    CertificateStatus.PENDING: "Pending",
    CertificateStatus.APPROVED: "Approved",
    CertificateStatus.REJECTED: "Rejected",
    CertificateStatus.ISSUED: "Issued",
    CertificateStatus.REVOKED: "Revoked",
    CertificateStatus.EXPIRED: "Expired",
}

CERTIFICATE_TYPE_LABELS: dict[CertificateType, str] = {
    CertificateType.ACADEMIC: "Academic Certificate",
    CertificateType.PROFESSIONAL: "Professional Certificate",
    CertificateType.ACHIEVEMENT: "Achievement Certificate",
    CertificateType.COMPLETION: "Completion Certificate",
    CertificateType.PARTICIPATION: "Participation Certificate",
    CertificateType.RECOGNITION: "Recognition Certificate",
    CertificateType.CUSTOM: "Custom Certificate",
}

VERIFICATION_STATUS_LABELS: dict[VerificationStatus, str] = {
    VerificationStatus.PENDING: "Pending Verification",
    VerificationStatus.VERIFIED: "Verified",
    VerificationStatus.REJECTED: "Rejected",
    VerificationStatus.EXPIRED: "Expired",
}

PRIORITY_LABELS: dict[int, str] = {
    1: "Low",
    2: "Low",
    3: "Normal",
    4: "High",
    5: "High",
}

_LABEL_TABLES: dict[type[Enum], dict] = {
    RequestStatus: REQUEST_STATUS_LABELS,
    ApprovalAction: APPROVAL_ACTION_LABELS,
    CertificateStatus: CERTIFICATE_STATUS_LABELS,
    CertificateType: CERTIFICATE_TYPE_LABELS,
    VerificationStatus: VERIFICATION_STATUS_LABELS,
}


def display_name(value: Enum) -> str:
    """Return the human-readable label for an enum member.

    Members without a dedicated label fall back to a title-cased value.
    """
    table = _LABEL_TABLES.get(type(value), {})
    if value in table:
        return table[value]
    return str(value.value).replace("_", " ").title()


def priority_label(priority: int) -> str:
    """Describe a priority level (Low, Normal or High)."""
    return PRIORITY_LABELS.get(priority, "Normal")
