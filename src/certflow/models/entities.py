"""Immutable entity value types.

Every entity is a frozen dataclass. Changes are made by building a new
value (``dataclasses.replace``) inside the services, never in place.
Collections are stored as tuples so that a value cannot be mutated
behind the back of its owner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from certflow.core.errors import ValidationError
from certflow.models.enums import (
    APPROVAL_ACTION_LABELS,
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
    ApprovalAction,
    ApprovalStepStatus,
    CertificateStatus,
    CertificateType,
    CertificateVerificationLevel,
    DocumentVerificationLevel,
    RequestStatus,
    ShareTarget,
    VerificationAction,
    VerificationStatus,
    priority_label,
)


def clamp_priority(priority: int) -> int:
    """Force a priority into the supported range instead of rejecting it.

    Raises:
        ValidationError: If priority is not an integer.
    """
    if not isinstance(priority, int):
        raise ValidationError.single("priority", "Priority must be an integer")
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


@dataclass(frozen=True, slots=True)
class ApprovalRecord:
    """One reviewer action on a certificate request.

    Records are appended to the request's approval history and never
    edited or removed afterwards.

    Attributes:
        record_id: Unique identifier of the record.
        reviewer_id: Identifier of the acting reviewer.
        reviewer_name: Display name of the reviewer.
        reviewer_role: Role the reviewer acted in (ca, admin, client).
        action: What the reviewer did.
        timestamp: When the action was taken.
        comment: Optional free-text comment (required for rejections).
        changes: Optional structured changes requested or applied.
    """

    record_id: str
    reviewer_id: str
    reviewer_name: str
    reviewer_role: str
    action: ApprovalAction
    timestamp: datetime
    comment: str | None = None
    changes: dict[str, Any] | None = None

    @property
    def is_positive(self) -> bool:
        return self.action.is_positive

    @property
    def is_negative(self) -> bool:
        return self.action.is_negative

    def describe(self) -> str:
        """Render the record as "name (role) action: comment"."""
        base = (
            f"{self.reviewer_name} ({self.reviewer_role}) "
            f"{APPROVAL_ACTION_LABELS[self.action].lower()}"
        )
        return f"{base}: {self.comment}" if self.comment else base


@dataclass(frozen=True, slots=True)
class CertificateRequest:
    """A client's application for a certificate.

    Invariants maintained by RequestWorkflow:
        - certificate_id is set if and only if status is ISSUED
        - rejection_reason is non-empty when status is REJECTED
        - assigned_at is set whenever assigned_ca_id is set
        - created_at <= submitted_at <= approved_at <= issued_at

    Priority is clamped to [1, 5] every time a value is built.
    """

    request_id: str
    client_id: str
    client_name: str
    client_email: str
    organization_id: str
    organization_name: str
    certificate_type: str
    title: str
    description: str
    purpose: str
    created_at: datetime
    updated_at: datetime
    requested_data: dict[str, Any] = field(default_factory=dict)
    attachment_refs: tuple[str, ...] = ()
    status: RequestStatus = RequestStatus.DRAFT
    assigned_ca_id: str | None = None
    assigned_ca_name: str | None = None
    assigned_at: datetime | None = None
    approval_history: tuple[ApprovalRecord, ...] = ()
    current_reviewer_id: str | None = None
    rejection_reason: str | None = None
    change_request_comments: str | None = None
    cancellation_reason: str | None = None
    priority: int = DEFAULT_PRIORITY
    certificate_id: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    issued_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "priority", clamp_priority(self.priority))

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachment_refs)

    @property
    def priority_label(self) -> str:
        return priority_label(self.priority)

    @property
    def can_cancel(self) -> bool:
        return self.status in (
            RequestStatus.DRAFT,
            RequestStatus.SUBMITTED,
            RequestStatus.CHANGES_REQUESTED,
        )

    @property
    def can_assign(self) -> bool:
        return self.status == RequestStatus.SUBMITTED and self.assigned_ca_id is None


@dataclass(frozen=True, slots=True)
class ShareToken:
    """Time- and count-limited credential for non-owner viewing.

    current_access only ever grows. Once a token is exhausted or past
    its expiry it stays unusable regardless of is_active.

    Attributes:
        token: Opaque fixed-length token string.
        target: Kind of resource the token opens.
        resource_id: Identifier of the certificate or document.
        created_by: Identifier of the owner who shared it.
        created_at: When the token was issued.
        expires_at: First instant at which the token is no longer usable.
        password_hash: SHA-256 digest of the optional password.
        max_access: Number of successful uses allowed.
        current_access: Number of successful uses so far.
        is_active: False once explicitly revoked.
        revoked_at: When the token was revoked, if ever.
    """

    token: str
    target: ShareTarget
    resource_id: str
    created_by: str
    created_at: datetime
    expires_at: datetime
    password_hash: str | None = None
    max_access: int = 100
    current_access: int = 0
    is_active: bool = True
    revoked_at: datetime | None = None

    @property
    def token_prefix(self) -> str:
        return self.token[:8]

    @property
    def requires_password(self) -> bool:
        return self.password_hash is not None

    @property
    def is_exhausted(self) -> bool:
        return self.current_access >= self.max_access

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now) and not self.is_exhausted


@dataclass(frozen=True, slots=True)
class ApprovalStep:
    """One step of a template's ordered sign-off chain.

    Steps are evaluated in ascending ``order``; a step cannot be decided
    while an earlier required step is still pending.
    """

    step_id: str
    step_name: str
    approver_id: str
    approver_name: str
    approver_email: str
    order: int
    status: ApprovalStepStatus = ApprovalStepStatus.PENDING
    approved_at: datetime | None = None
    comments: str | None = None
    required: bool = True


@dataclass(frozen=True, slots=True)
class IssuanceCredentials:
    """Values produced by the external identity/crypto collaborator.

    Attributes:
        verification_code: Public lookup key printed on the certificate.
        verification_id: Internal verification record identifier.
        qr_code: Payload encoded in the certificate's QR code.
        content_hash: Content-integrity digest of the certificate.
        digital_signature: Issuer signature over the content hash.
    """

    verification_code: str
    verification_id: str
    qr_code: str
    content_hash: str
    digital_signature: str


@dataclass(frozen=True, slots=True)
class Certificate:
    """An issued (or in-preparation) certificate.

    ``status`` records workflow history while ``is_revoked`` and the
    derived expiry record post-issuance validity. Revocation never
    rewrites the status.
    """

    certificate_id: str
    template_id: str
    issuer_id: str
    issuer_name: str
    recipient_id: str
    recipient_name: str
    recipient_email: str
    organization_id: str
    organization_name: str
    title: str
    description: str
    certificate_type: CertificateType
    verification_code: str
    verification_id: str
    qr_code: str
    content_hash: str
    digital_signature: str
    issued_at: datetime
    created_at: datetime
    updated_at: datetime
    request_id: str | None = None
    course_name: str | None = None
    grade: str | None = None
    credits: float | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    status: CertificateStatus = CertificateStatus.DRAFT
    verification_level: CertificateVerificationLevel = CertificateVerificationLevel.BASIC
    is_verified: bool = False
    is_revoked: bool = False
    revocation_reason: str | None = None
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    share_tokens: tuple[ShareToken, ...] = ()
    allowed_viewers: tuple[str, ...] = ()
    is_public: bool = False
    access_count: int = 0
    download_count: int = 0
    share_count: int = 0
    last_accessed_at: datetime | None = None
    approval_steps: tuple[ApprovalStep, ...] = ()


@dataclass(frozen=True, slots=True)
class VerificationStep:
    """One authenticity check recorded against an uploaded document."""

    step_id: str
    verifier_id: str
    verifier_name: str
    action: VerificationAction
    timestamp: datetime
    level: DocumentVerificationLevel = DocumentVerificationLevel.BASIC
    comment: str | None = None
    evidence: dict[str, Any] = field(default_factory=dict)
    checked_items: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Document:
    """An uploaded supporting document and its verification trail."""

    document_id: str
    name: str
    uploader_id: str
    uploader_name: str
    uploaded_at: datetime
    updated_at: datetime
    content_hash: str
    description: str = ""
    document_type: str = "other"
    expiry_date: datetime | None = None
    verification_history: tuple[VerificationStep, ...] = ()
    verification_status: VerificationStatus = VerificationStatus.PENDING
    verification_level: DocumentVerificationLevel = DocumentVerificationLevel.BASIC
    verifier_id: str | None = None
    verifier_name: str | None = None
    verified_at: datetime | None = None
    rejection_reason: str | None = None
    associated_certificate_id: str | None = None
    share_tokens: tuple[ShareToken, ...] = ()
    allowed_users: tuple[str, ...] = ()
    is_public: bool = False
    access_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return self.expiry_date is not None and now > self.expiry_date

    def can_be_shared(self, now: datetime) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED and not self.is_expired(now)
