"""Test data factories for certflow.

This module provides factory functions for creating test entities.
Use these to build consistent, valid values without duplicating data
structures across tests. Every factory accepts keyword overrides.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from itertools import count

from certflow.models.entities import (
    ApprovalRecord,
    ApprovalStep,
    Certificate,
    CertificateRequest,
    Document,
    IssuanceCredentials,
    ShareToken,
    VerificationStep,
)
from certflow.models.enums import (
    ApprovalAction,
    CertificateStatus,
    CertificateType,
    DocumentVerificationLevel,
    RequestStatus,
    ShareTarget,
    VerificationAction,
)

# Fixed reference instant used by every clock-dependent test
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

_ids = count(1)


class MutableClock:
    """Clock whose current time tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def sequential_tokens(prefix: str = "tok"):
    """Token factory producing distinct, predictable 40-character tokens."""
    numbers = count(1)

    def factory() -> str:
        return f"{prefix}{next(numbers):05d}".ljust(40, "x")

    return factory


def create_request(**overrides) -> CertificateRequest:
    """Create a complete draft request, created one day before NOW."""
    created = overrides.pop("created_at", NOW - timedelta(days=1))
    request = CertificateRequest(
        request_id=overrides.pop("request_id", f"REQ-{next(_ids)}"),
        client_id="client-1",
        client_name="Ada Lovelace",
        client_email="ada@example.org",
        organization_id="org-1",
        organization_name="Analytical Institute",
        certificate_type="academic",
        title="Transcript of Records",
        description="Official transcript for the 2025 academic year",
        purpose="Graduate school application",
        created_at=created,
        updated_at=created,
    )
    return replace(request, **overrides)


def create_submitted_request(**overrides) -> CertificateRequest:
    defaults = {
        "status": RequestStatus.SUBMITTED,
        "submitted_at": NOW - timedelta(hours=12),
    }
    return create_request(**{**defaults, **overrides})


def create_under_review_request(**overrides) -> CertificateRequest:
    defaults = {
        "status": RequestStatus.UNDER_REVIEW,
        "assigned_ca_id": "ca-1",
        "assigned_ca_name": "Dr. Chen",
        "assigned_at": NOW - timedelta(hours=6),
        "current_reviewer_id": "ca-1",
    }
    return create_submitted_request(**{**defaults, **overrides})


def create_approved_request(**overrides) -> CertificateRequest:
    defaults = {
        "status": RequestStatus.APPROVED,
        "approved_at": NOW - timedelta(hours=1),
        "current_reviewer_id": None,
    }
    return create_under_review_request(**{**defaults, **overrides})


def create_record(
    action: ApprovalAction,
    comment: str | None = None,
    timestamp: datetime = NOW,
    reviewer_id: str = "ca-1",
    record_id: str | None = None,
    changes: dict | None = None,
) -> ApprovalRecord:
    return ApprovalRecord(
        record_id=record_id or f"REC-{next(_ids)}",
        reviewer_id=reviewer_id,
        reviewer_name="Dr. Chen",
        reviewer_role="ca",
        action=action,
        timestamp=timestamp,
        comment=comment,
        changes=changes,
    )


def create_credentials(**overrides) -> IssuanceCredentials:
    values = {
        "verification_code": "VC-7F3K-92QD",
        "verification_id": "ver-001",
        "qr_code": "https://verify.example.org/VC-7F3K-92QD",
        "content_hash": "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
        "digital_signature": "sig-base64==",
    }
    values.update(overrides)
    return IssuanceCredentials(**values)


def create_certificate(**overrides) -> Certificate:
    """Create an issued, active certificate (issued one hour before NOW)."""
    issued = overrides.pop("issued_at", NOW - timedelta(hours=1))
    certificate = Certificate(
        certificate_id=overrides.pop("certificate_id", f"CERT-{next(_ids)}"),
        template_id="tpl-transcript",
        issuer_id="ca-1",
        issuer_name="Dr. Chen",
        recipient_id="client-1",
        recipient_name="Ada Lovelace",
        recipient_email="ada@example.org",
        organization_id="org-1",
        organization_name="Analytical Institute",
        title="Transcript of Records",
        description="Official transcript for the 2025 academic year",
        certificate_type=CertificateType.ACADEMIC,
        verification_code="VC-7F3K-92QD",
        verification_id="ver-001",
        qr_code="https://verify.example.org/VC-7F3K-92QD",
        content_hash="9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
        digital_signature="sig-base64==",
        issued_at=issued,
        created_at=issued,
        updated_at=issued,
        status=CertificateStatus.ISSUED,
    )
    return replace(certificate, **overrides)


def create_share_token(**overrides) -> ShareToken:
    token = ShareToken(
        token=overrides.pop("token", f"share{next(_ids):05d}".ljust(40, "x")),
        target=ShareTarget.CERTIFICATE,
        resource_id="CERT-1",
        created_by="client-1",
        created_at=NOW - timedelta(hours=1),
        expires_at=NOW + timedelta(days=7),
    )
    return replace(token, **overrides)


def create_step(
    step_id: str,
    order: int,
    approver_id: str | None = None,
    **overrides,
) -> ApprovalStep:
    step = ApprovalStep(
        step_id=step_id,
        step_name=f"Sign-off {step_id}",
        approver_id=approver_id or f"approver-{step_id}",
        approver_name=f"Approver {step_id}",
        approver_email=f"{step_id}@example.org",
        order=order,
    )
    return replace(step, **overrides)


def create_document(**overrides) -> Document:
    uploaded = overrides.pop("uploaded_at", NOW - timedelta(days=2))
    document = Document(
        document_id=overrides.pop("document_id", f"DOC-{next(_ids)}"),
        name="diploma.pdf",
        uploader_id="client-1",
        uploader_name="Ada Lovelace",
        uploaded_at=uploaded,
        updated_at=uploaded,
        content_hash="e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
    )
    return replace(document, **overrides)


def create_verification_step(
    action: VerificationAction,
    timestamp: datetime = NOW,
    level: DocumentVerificationLevel = DocumentVerificationLevel.STANDARD,
    comment: str | None = None,
    step_id: str | None = None,
) -> VerificationStep:
    return VerificationStep(
        step_id=step_id or f"VSTEP-{next(_ids)}",
        verifier_id="verifier-1",
        verifier_name="Grace Hopper",
        action=action,
        timestamp=timestamp,
        level=level,
        comment=comment,
        evidence={"registry": "national-diploma-registry"},
        checked_items=("signature", "seal"),
    )
