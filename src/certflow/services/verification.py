"""Append-only verification trail for uploaded documents.

Appending a step is always legal; the trail is history and is never
rewritten. The document's verification status is derived from the
latest step using the same tie-break as the approval ledger.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from certflow.core.clock import Clock, utc_now
from certflow.core.config import CertificateSettings
from certflow.core.errors import PreconditionFailedError, ValidationError
from certflow.models.entities import Document, ShareToken, VerificationStep
from certflow.models.enums import (
    DocumentVerificationLevel,
    ShareTarget,
    VerificationAction,
    VerificationStatus,
)
from certflow.services.approval_ledger import latest_entry
from certflow.services.share_tokens import find_token, replace_token

logger = logging.getLogger(__name__)

ACTION_VERIFICATION_STATUS: dict[VerificationAction, VerificationStatus] = {
    VerificationAction.VERIFY: VerificationStatus.VERIFIED,
    VerificationAction.REJECT: VerificationStatus.REJECTED,
    VerificationAction.REQUEST_INFO: VerificationStatus.PENDING,
}


def latest_step(steps: tuple[VerificationStep, ...]) -> VerificationStep | None:
    return latest_entry(steps, lambda step: step.timestamp)


def current_status(document: Document) -> VerificationStatus:
    """Status implied by the latest step; pending when there is none."""
    step = latest_step(document.verification_history)
    if step is None:
        return VerificationStatus.PENDING
    return ACTION_VERIFICATION_STATUS[step.action]


class VerificationTrail:
    """Records verification steps and answers trust questions."""

    def __init__(
        self,
        settings: CertificateSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or CertificateSettings()
        self._clock = clock

    def register(
        self,
        *,
        document_id: str,
        name: str,
        uploader_id: str,
        uploader_name: str,
        content_hash: str,
        description: str = "",
        document_type: str = "other",
        expiry_date: datetime | None = None,
        associated_certificate_id: str | None = None,
    ) -> Document:
        """Create a document record awaiting verification."""
        violations = [
            (field, message)
            for field, value, message in (
                ("document_id", document_id, "Document ID is required"),
                ("name", name, "Document name is required"),
                ("uploader_id", uploader_id, "Uploader ID is required"),
                ("content_hash", content_hash, "Content hash is required"),
            )
            if not value.strip()
        ]
        if violations:
            raise ValidationError.from_pairs(violations)

        now = self._clock()
        return Document(
            document_id=document_id,
            name=name,
            uploader_id=uploader_id,
            uploader_name=uploader_name,
            uploaded_at=now,
            updated_at=now,
            content_hash=content_hash,
            description=description,
            document_type=document_type,
            expiry_date=expiry_date,
            associated_certificate_id=associated_certificate_id,
        )

    def append_step(self, document: Document, step: VerificationStep) -> Document:
        """Append a step and refresh the derived verification fields.

        Raises:
            ValidationError: If a step with the same id was already recorded.
        """
        if any(existing.step_id == step.step_id for existing in document.verification_history):
            raise ValidationError.single(
                "step_id", f"Verification step {step.step_id} was already recorded"
            )

        updated = replace(
            document,
            verification_history=(*document.verification_history, step),
            updated_at=self._clock(),
        )
        latest = latest_step(updated.verification_history)
        status = current_status(updated)

        changes: dict = {"verification_status": status}
        if latest is step:
            changes.update(
                verifier_id=step.verifier_id,
                verifier_name=step.verifier_name,
                verification_level=step.level,
            )
            if status == VerificationStatus.VERIFIED:
                changes.update(verified_at=step.timestamp, rejection_reason=None)
            elif status == VerificationStatus.REJECTED:
                changes.update(
                    verified_at=None,
                    rejection_reason=(step.comment or "").strip() or None,
                )
            else:
                changes["verified_at"] = None

        logger.info(
            "Verification step recorded",
            extra={
                "document_id": document.document_id,
                "step_id": step.step_id,
                "action": step.action.value,
                "verifier_id": step.verifier_id,
                "verification_status": status.value,
            },
        )
        return replace(updated, **changes)

    def current_status(self, document: Document) -> VerificationStatus:
        return current_status(document)

    def effective_status(
        self, document: Document, now: datetime | None = None
    ) -> VerificationStatus:
        """Verification status for display; an expired document reads as expired."""
        if document.is_expired(now or self._clock()):
            return VerificationStatus.EXPIRED
        return current_status(document)

    def is_trusted_for_template(
        self,
        document: Document,
        minimum_level: DocumentVerificationLevel | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Whether the document may back a certificate template.

        Requires the latest step to be a verification at or above the
        minimum level, and the document not to be expired.
        """
        minimum = minimum_level or self._settings.minimum_template_verification_level
        now = now or self._clock()
        step = latest_step(document.verification_history)
        if step is None or step.action != VerificationAction.VERIFY:
            return False
        if document.is_expired(now):
            return False
        return step.level.rank >= minimum.rank

    def can_be_shared(self, document: Document, now: datetime | None = None) -> bool:
        now = now or self._clock()
        if document.is_expired(now):
            return False
        return current_status(document) == VerificationStatus.VERIFIED

    def attach_share_token(self, document: Document, token: ShareToken) -> Document:
        """Embed a share token in a verified, unexpired document.

        Raises:
            PreconditionFailedError: If the document cannot be shared or the
                token is bound to another resource or already attached.
        """
        if token.target != ShareTarget.DOCUMENT or token.resource_id != document.document_id:
            raise PreconditionFailedError(
                "attach_share_token",
                f"token {token.token_prefix}... is bound to {token.target.value} "
                f"{token.resource_id}",
            )
        if not self.can_be_shared(document):
            raise PreconditionFailedError(
                "attach_share_token",
                f"document {document.document_id} is not verified or has expired",
            )
        if find_token(document.share_tokens, token.token) is not None:
            raise PreconditionFailedError(
                "attach_share_token",
                f"token {token.token_prefix}... is already attached to document "
                f"{document.document_id}",
            )
        return replace(
            document,
            share_tokens=(*document.share_tokens, token),
            updated_at=self._clock(),
        )

    def update_share_token(self, document: Document, token: ShareToken) -> Document:
        return replace(
            document,
            share_tokens=replace_token(document.share_tokens, token),
            updated_at=self._clock(),
        )

    def record_access(self, document: Document) -> Document:
        return replace(document, access_count=document.access_count + 1, updated_at=self._clock())

    def find_trusted(
        self,
        documents: Iterable[Document],
        minimum_level: DocumentVerificationLevel | None = None,
    ) -> list[Document]:
        now = self._clock()
        return [
            document
            for document in documents
            if self.is_trusted_for_template(document, minimum_level, now)
        ]
