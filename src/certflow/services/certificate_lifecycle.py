"""Certificate lifecycle: issuance, sign-off, revocation and access tracking.

A certificate has two independent axes:
- ``status`` records workflow history (draft -> pending -> approved -> issued)
- ``is_revoked`` and the derived expiry record post-issuance validity

Revocation sets a flag and never rewrites the status, so a revoked
certificate is still found by queries on "issued". Expiry is never
stored; it is computed from expires_at against the injected clock.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import fields, replace
from datetime import datetime

from certflow.core.clock import Clock, utc_now
from certflow.core.config import CertificateSettings
from certflow.core.errors import (
    AlreadyFinalizedError,
    PreconditionFailedError,
    ValidationError,
)
from certflow.models.entities import (
    ApprovalStep,
    Certificate,
    CertificateRequest,
    IssuanceCredentials,
    ShareToken,
)
from certflow.models.enums import (
    CertificateStatus,
    CertificateType,
    CertificateVerificationLevel,
    RequestStatus,
    ShareTarget,
)
from certflow.services import approval_steps
from certflow.services.share_tokens import find_token, replace_token
from certflow.services.status import StatusModel

logger = logging.getLogger(__name__)


def coerce_certificate_type(value: str | CertificateType) -> CertificateType:
    """Map a request's free-text certificate type onto the closed enum.

    Unknown values fall back to CUSTOM.
    """
    if isinstance(value, CertificateType):
        return value
    try:
        return CertificateType(value.strip().lower())
    except ValueError:
        return CertificateType.CUSTOM


def _credential_violations(credentials: IssuanceCredentials) -> list[tuple[str, str]]:
    return [
        (f.name, f"{f.name.replace('_', ' ').capitalize()} is required")
        for f in fields(credentials)
        if not str(getattr(credentials, f.name) or "").strip()
    ]


class CertificateLifecycle:
    """Pure transitions and derived reads over Certificate values.

    Example:
        lifecycle = CertificateLifecycle(settings.certificate)
        certificate = lifecycle.issue(request, credentials, certificate_id="CERT-1", ...)
        if lifecycle.is_near_expiry(certificate):
            remind_recipient(certificate)
    """

    def __init__(
        self,
        settings: CertificateSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or CertificateSettings()
        self._clock = clock

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def draft(
        self,
        request: CertificateRequest,
        credentials: IssuanceCredentials,
        *,
        certificate_id: str,
        template_id: str,
        issuer_id: str,
        issuer_name: str,
        certificate_type: str | CertificateType | None = None,
        expires_at: datetime | None = None,
        course_name: str | None = None,
        grade: str | None = None,
        credits: float | None = None,
        completed_at: datetime | None = None,
        verification_level: CertificateVerificationLevel = CertificateVerificationLevel.BASIC,
        approval_steps_chain: Sequence[ApprovalStep] = (),
    ) -> Certificate:
        """Build a draft certificate for an approved request.

        The draft goes through the template's sign-off chain
        (submit_for_approval, approve_step, issue_approved) before it is
        issued.

        Raises:
            PreconditionFailedError: If the request is not approved.
            ValidationError: If credentials are incomplete, expiry is not after
                issuance, or the approval chain is malformed.
        """
        return self._build(
            request,
            credentials,
            status=CertificateStatus.DRAFT,
            certificate_id=certificate_id,
            template_id=template_id,
            issuer_id=issuer_id,
            issuer_name=issuer_name,
            certificate_type=certificate_type,
            expires_at=expires_at,
            course_name=course_name,
            grade=grade,
            credits=credits,
            completed_at=completed_at,
            verification_level=verification_level,
            approval_steps_chain=approval_steps_chain,
        )

    def issue(
        self,
        request: CertificateRequest,
        credentials: IssuanceCredentials,
        *,
        certificate_id: str,
        template_id: str,
        issuer_id: str,
        issuer_name: str,
        certificate_type: str | CertificateType | None = None,
        expires_at: datetime | None = None,
        course_name: str | None = None,
        grade: str | None = None,
        credits: float | None = None,
        completed_at: datetime | None = None,
        verification_level: CertificateVerificationLevel = CertificateVerificationLevel.BASIC,
    ) -> Certificate:
        """Issue a certificate directly from an approved request.

        Args:
            request: The approved request; its client becomes the recipient.
            credentials: Verification code, QR payload, hash and signature
                produced by the identity/crypto collaborator.
            certificate_id: Identifier for the new certificate.
            template_id: Template the certificate is rendered from.
            issuer_id: Issuing authority identifier.
            issuer_name: Issuing authority display name.
            certificate_type: Overrides the request's certificate type.
            expires_at: Optional expiry; must be after issuance.

        Returns:
            A certificate in status issued with created/updated/issued = now.

        Raises:
            PreconditionFailedError: If the request is not approved.
            ValidationError: If credentials are incomplete or expiry is not
                after issuance.
        """
        certificate = self._build(
            request,
            credentials,
            status=CertificateStatus.ISSUED,
            certificate_id=certificate_id,
            template_id=template_id,
            issuer_id=issuer_id,
            issuer_name=issuer_name,
            certificate_type=certificate_type,
            expires_at=expires_at,
            course_name=course_name,
            grade=grade,
            credits=credits,
            completed_at=completed_at,
            verification_level=verification_level,
            approval_steps_chain=(),
        )
        logger.info(
            "Certificate issued",
            extra={
                "certificate_id": certificate_id,
                "request_id": request.request_id,
                "issuer_id": issuer_id,
                "recipient_id": certificate.recipient_id,
            },
        )
        return certificate

    def _build(
        self,
        request: CertificateRequest,
        credentials: IssuanceCredentials,
        *,
        status: CertificateStatus,
        certificate_id: str,
        template_id: str,
        issuer_id: str,
        issuer_name: str,
        certificate_type: str | CertificateType | None,
        expires_at: datetime | None,
        course_name: str | None,
        grade: str | None,
        credits: float | None,
        completed_at: datetime | None,
        verification_level: CertificateVerificationLevel,
        approval_steps_chain: Sequence[ApprovalStep],
    ) -> Certificate:
        if request.status != RequestStatus.APPROVED:
            raise PreconditionFailedError(
                "issue",
                f"request {request.request_id} is {request.status.value}, expected approved",
            )

        now = self._clock()
        if request.approved_at is not None and now < request.approved_at:
            now = request.approved_at

        violations = _credential_violations(credentials)
        if not certificate_id.strip():
            violations.append(("certificate_id", "Certificate ID is required"))
        if not template_id.strip():
            violations.append(("template_id", "Template ID is required"))
        if expires_at is not None and expires_at <= now:
            violations.append(("expires_at", "Expiry must be after issuance"))
        if violations:
            raise ValidationError.from_pairs(violations)

        return Certificate(
            certificate_id=certificate_id,
            template_id=template_id,
            issuer_id=issuer_id,
            issuer_name=issuer_name,
            recipient_id=request.client_id,
            recipient_name=request.client_name,
            recipient_email=request.client_email,
            organization_id=request.organization_id,
            organization_name=request.organization_name,
            title=request.title,
            description=request.description,
            certificate_type=coerce_certificate_type(
                certificate_type if certificate_type is not None else request.certificate_type
            ),
            verification_code=credentials.verification_code,
            verification_id=credentials.verification_id,
            qr_code=credentials.qr_code,
            content_hash=credentials.content_hash,
            digital_signature=credentials.digital_signature,
            issued_at=now,
            created_at=now,
            updated_at=now,
            request_id=request.request_id,
            course_name=course_name,
            grade=grade,
            credits=credits,
            completed_at=completed_at,
            expires_at=expires_at,
            status=status,
            verification_level=verification_level,
            approval_steps=approval_steps.validate_chain(approval_steps_chain),
        )

    # -------------------------------------------------------------------------
    # Sign-off chain
    # -------------------------------------------------------------------------

    def submit_for_approval(self, certificate: Certificate) -> Certificate:
        """Move a draft into pending so its approval chain can run."""
        StatusModel.require_transition(certificate.status, CertificateStatus.PENDING)
        steps = approval_steps.validate_chain(certificate.approval_steps)
        return self._transition(certificate, CertificateStatus.PENDING, approval_steps=steps)

    def approve_step(
        self,
        certificate: Certificate,
        step_id: str,
        approver_id: str,
        comments: str | None = None,
    ) -> Certificate:
        """Approve one sign-off step; a complete chain approves the certificate.

        Raises:
            PreconditionFailedError: If the certificate is not pending, the
                approver does not own the step, or an earlier required step
                is still pending.
            AlreadyFinalizedError: If the step or the chain was already decided.
        """
        self._require_pending(certificate, "approve_step")
        steps = approval_steps.approve_step(
            certificate.approval_steps, step_id, approver_id, self._clock(), comments
        )
        if approval_steps.is_complete(steps):
            return self._transition(certificate, CertificateStatus.APPROVED, approval_steps=steps)
        return replace(certificate, approval_steps=steps, updated_at=self._clock())

    def reject_step(
        self,
        certificate: Certificate,
        step_id: str,
        approver_id: str,
        comments: str | None = None,
    ) -> Certificate:
        """Reject one sign-off step, which rejects the certificate."""
        self._require_pending(certificate, "reject_step")
        steps = approval_steps.reject_step(
            certificate.approval_steps, step_id, approver_id, self._clock(), comments
        )
        return self._transition(certificate, CertificateStatus.REJECTED, approval_steps=steps)

    def approve(self, certificate: Certificate) -> Certificate:
        """Approve a pending certificate whose chain is complete.

        Raises:
            InvalidTransitionError: If the certificate is not pending.
            PreconditionFailedError: If a required step is still undecided.
        """
        StatusModel.require_transition(certificate.status, CertificateStatus.APPROVED)
        if not approval_steps.is_complete(certificate.approval_steps):
            pending = approval_steps.next_pending(certificate.approval_steps)
            raise PreconditionFailedError(
                "approve",
                f"certificate {certificate.certificate_id} is waiting on step "
                f"{pending.step_id if pending else 'unknown'}",
            )
        return self._transition(certificate, CertificateStatus.APPROVED)

    def reject(self, certificate: Certificate) -> Certificate:
        """Reject a draft or pending certificate."""
        StatusModel.require_transition(certificate.status, CertificateStatus.REJECTED)
        return self._transition(certificate, CertificateStatus.REJECTED)

    def issue_approved(self, certificate: Certificate) -> Certificate:
        """Issue a certificate that went through its sign-off chain."""
        StatusModel.require_transition(certificate.status, CertificateStatus.ISSUED)
        now = self._clock()
        if certificate.expires_at is not None and certificate.expires_at <= now:
            raise ValidationError.single("expires_at", "Expiry must be after issuance")
        return self._transition(certificate, CertificateStatus.ISSUED, issued_at=now)

    # -------------------------------------------------------------------------
    # Post-issuance
    # -------------------------------------------------------------------------

    def revoke(self, certificate: Certificate, reason: str, revoked_by: str) -> Certificate:
        """Revoke an issued certificate; one-way and status-preserving.

        Raises:
            AlreadyFinalizedError: If the certificate was already revoked.
            PreconditionFailedError: If the certificate was never issued.
            ValidationError: If no reason is given.
        """
        if certificate.is_revoked:
            raise AlreadyFinalizedError(
                certificate.certificate_id, CertificateStatus.REVOKED, CertificateStatus.REVOKED
            )
        if certificate.status != CertificateStatus.ISSUED:
            raise PreconditionFailedError(
                "revoke",
                f"certificate {certificate.certificate_id} is "
                f"{certificate.status.value}, expected issued",
            )
        if not reason.strip():
            raise ValidationError.single("reason", "A revocation reason is required")

        now = self._clock()
        logger.info(
            "Certificate revoked",
            extra={
                "certificate_id": certificate.certificate_id,
                "revoked_by": revoked_by,
            },
        )
        return replace(
            certificate,
            is_revoked=True,
            revocation_reason=reason.strip(),
            revoked_at=now,
            revoked_by=revoked_by,
            updated_at=now,
        )

    def record_access(self, certificate: Certificate) -> Certificate:
        """Count one view; every call counts."""
        now = self._clock()
        return replace(
            certificate,
            access_count=certificate.access_count + 1,
            last_accessed_at=now,
            updated_at=now,
        )

    def record_download(self, certificate: Certificate) -> Certificate:
        return replace(
            certificate,
            download_count=certificate.download_count + 1,
            updated_at=self._clock(),
        )

    def record_share(self, certificate: Certificate) -> Certificate:
        return replace(
            certificate,
            share_count=certificate.share_count + 1,
            updated_at=self._clock(),
        )

    def attach_share_token(self, certificate: Certificate, token: ShareToken) -> Certificate:
        """Embed a newly issued token and count the share.

        Raises:
            PreconditionFailedError: If the certificate is not active or the
                token is bound to another resource or already attached.
        """
        if (
            token.target != ShareTarget.CERTIFICATE
            or token.resource_id != certificate.certificate_id
        ):
            raise PreconditionFailedError(
                "attach_share_token",
                f"token {token.token_prefix}... is bound to {token.target.value} "
                f"{token.resource_id}",
            )
        if not self.is_active(certificate):
            raise PreconditionFailedError(
                "attach_share_token",
                f"certificate {certificate.certificate_id} is not active",
            )
        if find_token(certificate.share_tokens, token.token) is not None:
            raise PreconditionFailedError(
                "attach_share_token",
                f"token {token.token_prefix}... is already attached to certificate "
                f"{certificate.certificate_id}",
            )
        return replace(
            certificate,
            share_tokens=(*certificate.share_tokens, token),
            share_count=certificate.share_count + 1,
            updated_at=self._clock(),
        )

    def update_share_token(self, certificate: Certificate, token: ShareToken) -> Certificate:
        """Store a consumed or revoked version of an embedded token."""
        return replace(
            certificate,
            share_tokens=replace_token(certificate.share_tokens, token),
            updated_at=self._clock(),
        )

    def set_visibility(
        self,
        certificate: Certificate,
        *,
        is_public: bool | None = None,
        allowed_viewers: Iterable[str] | None = None,
    ) -> Certificate:
        changes: dict = {"updated_at": self._clock()}
        if is_public is not None:
            changes["is_public"] = is_public
        if allowed_viewers is not None:
            changes["allowed_viewers"] = tuple(dict.fromkeys(allowed_viewers))
        return replace(certificate, **changes)

    # -------------------------------------------------------------------------
    # Derived reads
    # -------------------------------------------------------------------------

    def is_expired(self, certificate: Certificate, now: datetime | None = None) -> bool:
        if certificate.expires_at is None:
            return False
        return (now or self._clock()) > certificate.expires_at

    def is_active(self, certificate: Certificate, now: datetime | None = None) -> bool:
        """Issued, not revoked and not expired."""
        return (
            certificate.status == CertificateStatus.ISSUED
            and not certificate.is_revoked
            and not self.is_expired(certificate, now)
        )

    def days_until_expiry(
        self, certificate: Certificate, now: datetime | None = None
    ) -> int | None:
        if certificate.expires_at is None:
            return None
        return (certificate.expires_at - (now or self._clock())).days

    def is_near_expiry(self, certificate: Certificate, now: datetime | None = None) -> bool:
        days = self.days_until_expiry(certificate, now)
        return days is not None and 0 < days <= self._settings.near_expiry_days

    def can_be_shared(self, certificate: Certificate, now: datetime | None = None) -> bool:
        now = now or self._clock()
        if not self.is_active(certificate, now):
            return False
        return (
            certificate.is_public
            or bool(certificate.allowed_viewers)
            or any(token.is_valid(now) for token in certificate.share_tokens)
        )

    def effective_status(
        self, certificate: Certificate, now: datetime | None = None
    ) -> CertificateStatus:
        """Status for display: revocation and expiry override issued."""
        if certificate.is_revoked:
            return CertificateStatus.REVOKED
        if certificate.status == CertificateStatus.ISSUED and self.is_expired(certificate, now):
            return CertificateStatus.EXPIRED
        return certificate.status

    def find_near_expiry(
        self, certificates: Iterable[Certificate], now: datetime | None = None
    ) -> list[Certificate]:
        """Active certificates inside the near-expiry window, soonest first."""
        now = now or self._clock()
        found = [
            certificate
            for certificate in certificates
            if self.is_active(certificate, now) and self.is_near_expiry(certificate, now)
        ]
        return sorted(found, key=lambda certificate: certificate.expires_at)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_pending(self, certificate: Certificate, operation: str) -> None:
        if certificate.status != CertificateStatus.PENDING:
            raise PreconditionFailedError(
                operation,
                f"certificate {certificate.certificate_id} is "
                f"{certificate.status.value}, expected pending",
            )

    def _transition(
        self,
        certificate: Certificate,
        to_status: CertificateStatus,
        **changes,
    ) -> Certificate:
        StatusModel.require_transition(certificate.status, to_status)
        logger.info(
            "Certificate transition completed",
            extra={
                "certificate_id": certificate.certificate_id,
                "from_status": certificate.status.value,
                "to_status": to_status.value,
            },
        )
        return replace(certificate, status=to_status, updated_at=self._clock(), **changes)
