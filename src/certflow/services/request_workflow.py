"""Certificate request workflow state machine.

This module implements the request lifecycle with:
- Legal transitions only (StatusModel)
- Reviewer actions appended to the ApprovalLedger together with the
  status change they imply, as one new value
- Validation that reports every missing field at once
- SLA (overdue) and stale-draft derived reads against an injected clock

Every operation takes a CertificateRequest and returns a new one; the
input value is never modified. Persisting the result is the caller's
job (see certflow.services.workflow).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from certflow.core.clock import Clock, utc_now
from certflow.core.config import WorkflowSettings
from certflow.core.errors import (
    AlreadyFinalizedError,
    FieldViolation,
    InvalidTransitionError,
    PreconditionFailedError,
    ValidationError,
)
from certflow.models.entities import ApprovalRecord, CertificateRequest
from certflow.models.enums import ApprovalAction, RequestStatus
from certflow.services.approval_ledger import ApprovalLedger
from certflow.services.status import StatusModel

logger = logging.getLogger(__name__)

# Fields that must be non-empty before a request can be submitted
REQUIRED_FIELDS: dict[str, str] = {
    "client_id": "Client ID is required",
    "client_name": "Client name is required",
    "client_email": "Client email is required",
    "organization_id": "Organization ID is required",
    "certificate_type": "Certificate type is required",
    "title": "Title is required",
    "description": "Description is required",
    "purpose": "Purpose is required",
}

# Fields a client may change while the request is editable
EDITABLE_FIELDS = frozenset(
    {
        "client_name",
        "client_email",
        "organization_name",
        "certificate_type",
        "title",
        "description",
        "purpose",
        "requested_data",
        "attachment_refs",
        "priority",
    }
)

# Actions that decide the request and therefore must move its status
DECISION_ACTIONS = frozenset(
    {
        ApprovalAction.APPROVED,
        ApprovalAction.REJECTED,
        ApprovalAction.CHANGES_REQUESTED,
    }
)

# Reviewer role allowed to decide requests assigned to someone else
ADMIN_ROLE = "admin"


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of a review action.

    The caller uses previous/new status to decide which notification
    to dispatch; the engine itself never sends any.

    Attributes:
        request: The request after the action.
        previous_status: Status before the action.
        new_status: Status after the action.
        record: The ledger record that was appended.
    """

    request: CertificateRequest
    previous_status: RequestStatus
    new_status: RequestStatus
    record: ApprovalRecord

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


def _not_before(moment: datetime, floor: datetime | None) -> datetime:
    """Keep lifecycle timestamps monotonic even if the clock steps back."""
    if floor is not None and moment < floor:
        return floor
    return moment


def missing_field_violations(request: CertificateRequest) -> list[FieldViolation]:
    """Collect every required-field and format violation for submission."""
    violations = [
        FieldViolation(field=name, message=message)
        for name, message in REQUIRED_FIELDS.items()
        if not str(getattr(request, name) or "").strip()
    ]
    email = request.client_email.strip()
    if email and "@" not in email:
        violations.append(
            FieldViolation(
                field="client_email",
                message="Client email must be a valid email address",
            )
        )
    return violations


def invariant_violations(request: CertificateRequest) -> list[FieldViolation]:
    """Check the cross-field invariants every stored request must hold."""
    violations: list[FieldViolation] = []

    if (request.certificate_id is not None) != (request.status == RequestStatus.ISSUED):
        violations.append(
            FieldViolation(
                field="certificate_id",
                message="Certificate ID must be set exactly when the request is issued",
            )
        )
    if request.status == RequestStatus.REJECTED and not (request.rejection_reason or "").strip():
        violations.append(
            FieldViolation(
                field="rejection_reason",
                message="Rejected requests must have a rejection reason",
            )
        )
    if request.assigned_ca_id is not None and request.assigned_at is None:
        violations.append(
            FieldViolation(
                field="assigned_at",
                message="Assigned requests must have an assignment timestamp",
            )
        )

    ordered = (
        ("created_at", request.created_at),
        ("submitted_at", request.submitted_at),
        ("approved_at", request.approved_at),
        ("issued_at", request.issued_at),
    )
    previous_name, previous = ordered[0]
    for name, moment in ordered[1:]:
        if moment is None:
            continue
        if moment < previous:
            violations.append(
                FieldViolation(field=name, message=f"{name} cannot be before {previous_name}")
            )
        previous_name, previous = name, moment

    return violations


def validate_request(request: CertificateRequest) -> list[FieldViolation]:
    """Full consistency check: required fields plus invariants."""
    return missing_field_violations(request) + invariant_violations(request)


class RequestWorkflow:
    """State machine over CertificateRequest values.

    Example:
        workflow = RequestWorkflow(settings.workflow)
        request = workflow.submit(draft)
        request = workflow.assign(request, reviewer_id="ca-1", reviewer_name="Dr. Chen")
        result = workflow.review(request, record)
        if result.new_status == RequestStatus.REJECTED:
            notify_client(result.request)
    """

    def __init__(
        self,
        settings: WorkflowSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or WorkflowSettings()
        self._clock = clock

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    # -------------------------------------------------------------------------
    # Creation and client edits
    # -------------------------------------------------------------------------

    def create(
        self,
        *,
        request_id: str,
        client_id: str,
        client_name: str,
        client_email: str,
        organization_id: str,
        organization_name: str = "",
        certificate_type: str = "",
        title: str = "",
        description: str = "",
        purpose: str = "",
        requested_data: dict[str, Any] | None = None,
        attachment_refs: tuple[str, ...] = (),
        priority: int | None = None,
    ) -> CertificateRequest:
        """Create a new draft request owned by a client."""
        now = self.now()
        request = CertificateRequest(
            request_id=request_id,
            client_id=client_id,
            client_name=client_name,
            client_email=client_email,
            organization_id=organization_id,
            organization_name=organization_name,
            certificate_type=certificate_type,
            title=title,
            description=description,
            purpose=purpose,
            created_at=now,
            updated_at=now,
            requested_data=dict(requested_data or {}),
            attachment_refs=tuple(attachment_refs),
            priority=self._settings.default_priority if priority is None else priority,
        )
        logger.info(
            "Certificate request created",
            extra={"request_id": request_id, "client_id": client_id},
        )
        return request

    def update_content(self, request: CertificateRequest, **changes: Any) -> CertificateRequest:
        """Apply client edits while the request is editable.

        Raises:
            AlreadyFinalizedError: If the request is terminal.
            PreconditionFailedError: If the request is not draft/changes_requested.
            ValidationError: If a non-editable field is named.
        """
        self._ensure_not_finalized(request)
        if not request.status.can_edit:
            raise PreconditionFailedError(
                "update_content",
                f"request {request.request_id} is {request.status.value}; "
                "only draft or changes_requested requests can be edited",
            )
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                [FieldViolation(field=name, message="Field cannot be edited") for name in unknown]
            )
        if "attachment_refs" in changes:
            changes["attachment_refs"] = tuple(changes["attachment_refs"])
        if "requested_data" in changes:
            changes["requested_data"] = dict(changes["requested_data"])
        return replace(request, updated_at=self.now(), **changes)

    def set_priority(self, request: CertificateRequest, priority: int) -> CertificateRequest:
        """Change the priority; out-of-range values are clamped, not rejected."""
        self._ensure_not_finalized(request)
        return replace(request, priority=priority, updated_at=self.now())

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def submit(self, request: CertificateRequest) -> CertificateRequest:
        """Hand a draft (or a returned request) in for review.

        Raises:
            AlreadyFinalizedError: If the request is terminal.
            InvalidTransitionError: If the request is not draft/changes_requested.
            ValidationError: Listing every missing or malformed field.
        """
        self._ensure_not_finalized(request, RequestStatus.SUBMITTED)
        StatusModel.require_transition(request.status, RequestStatus.SUBMITTED)

        violations = missing_field_violations(request)
        if violations:
            logger.info(
                "Submission rejected: incomplete request",
                extra={"request_id": request.request_id, "fields": [v.field for v in violations]},
            )
            raise ValidationError(violations)

        now = self.now()
        submitted = replace(
            request,
            status=RequestStatus.SUBMITTED,
            submitted_at=request.submitted_at or _not_before(now, request.created_at),
            updated_at=now,
        )
        self._log_transition(request, submitted.status)
        return submitted

    def assign(
        self,
        request: CertificateRequest,
        reviewer_id: str,
        reviewer_name: str | None = None,
    ) -> CertificateRequest:
        """Assign a certificate authority reviewer; status is unchanged.

        Raises:
            AlreadyFinalizedError: If the request is terminal.
            PreconditionFailedError: If the request is not submitted or is already assigned.
        """
        self._ensure_not_finalized(request)
        if not reviewer_id.strip():
            raise ValidationError.single("reviewer_id", "Reviewer ID is required")
        if not request.can_assign:
            raise PreconditionFailedError(
                "assign",
                f"request {request.request_id} is {request.status.value} "
                f"with assignee {request.assigned_ca_id!r}",
            )
        now = self.now()
        logger.info(
            "Reviewer assigned",
            extra={"request_id": request.request_id, "reviewer_id": reviewer_id},
        )
        return replace(
            request,
            assigned_ca_id=reviewer_id,
            assigned_ca_name=reviewer_name,
            assigned_at=now,
            updated_at=now,
        )

    def start_review(self, request: CertificateRequest, reviewer_id: str) -> CertificateRequest:
        """Move a submitted request under review by ``reviewer_id``."""
        self._ensure_not_finalized(request, RequestStatus.UNDER_REVIEW)
        StatusModel.require_transition(request.status, RequestStatus.UNDER_REVIEW)
        reviewing = replace(
            request,
            status=RequestStatus.UNDER_REVIEW,
            current_reviewer_id=reviewer_id,
            updated_at=self.now(),
        )
        self._log_transition(request, reviewing.status, actor_id=reviewer_id)
        return reviewing

    def review(self, request: CertificateRequest, record: ApprovalRecord) -> TransitionResult:
        """Append a reviewer action and apply the status it implies.

        A decision (approve, reject, request changes) on a submitted request
        passes through under_review first. Assign, forward and info requests
        leave the status alone.

        Raises:
            AlreadyFinalizedError: If the request is terminal.
            InvalidTransitionError: If the implied status change is illegal.
            ValidationError: If a rejection has no comment or a forward has no target.
            PreconditionFailedError: If a decision comes from someone other than
                the assigned reviewer (admins excepted), or a forward or info
                request targets a request not awaiting review.
        """
        ledger, target = ApprovalLedger.for_request(request).append(record, request.status)
        action = record.action
        current = request.status

        if (
            action in DECISION_ACTIONS
            and request.assigned_ca_id
            and record.reviewer_id != request.assigned_ca_id
            and record.reviewer_role != ADMIN_ROLE
        ):
            logger.warning(
                "Review by unassigned reviewer refused",
                extra={
                    "request_id": request.request_id,
                    "assigned_ca_id": request.assigned_ca_id,
                    "reviewer_id": record.reviewer_id,
                    "action": action.value,
                },
            )
            raise PreconditionFailedError(
                "review",
                f"{record.reviewer_id} is not assigned to review request {request.request_id}",
            )
        if action == ApprovalAction.INFO_REQUESTED and not current.requires_review:
            raise PreconditionFailedError(
                "review",
                f"request {request.request_id} is {current.value}; "
                "only requests awaiting review can receive information requests",
            )

        comment = (record.comment or "").strip()
        if action == ApprovalAction.REJECTED and not comment:
            raise ValidationError.single("comment", "A rejection requires a comment")
        if action == ApprovalAction.ASSIGNED and current != RequestStatus.SUBMITTED:
            raise InvalidTransitionError(
                current,
                target,
                reason=f"Only submitted requests can be assigned, not {current.value}",
            )

        path = self._status_path(current, target, action)
        for from_status, to_status in zip((current, *path), path, strict=False):
            if not StatusModel.can_transition(from_status, to_status):
                logger.warning(
                    "Invalid review transition attempted",
                    extra={
                        "request_id": request.request_id,
                        "from_status": current.value,
                        "to_status": target.value,
                        "action": action.value,
                        "reviewer_id": record.reviewer_id,
                    },
                )
                raise InvalidTransitionError(current, target)

        now = self.now()
        changes: dict[str, Any] = {
            "approval_history": ledger.records,
            "status": target,
            "updated_at": now,
        }
        if path and path[0] == RequestStatus.UNDER_REVIEW:
            changes["current_reviewer_id"] = record.reviewer_id

        if action == ApprovalAction.APPROVED:
            changes["approved_at"] = _not_before(now, request.submitted_at)
        elif action == ApprovalAction.REJECTED:
            changes["rejection_reason"] = comment
            changes["current_reviewer_id"] = None
        elif action == ApprovalAction.CHANGES_REQUESTED:
            changes["change_request_comments"] = comment or None
            changes["current_reviewer_id"] = None
        elif action in (ApprovalAction.ASSIGNED, ApprovalAction.FORWARDED):
            assignee_id, assignee_name = self._assignee(request, record)
            changes.update(
                assigned_ca_id=assignee_id,
                assigned_ca_name=assignee_name,
                assigned_at=now,
            )
            if action == ApprovalAction.FORWARDED and current == RequestStatus.UNDER_REVIEW:
                changes["current_reviewer_id"] = assignee_id

        reviewed = replace(request, **changes)
        if target != current:
            self._log_transition(request, target, actor_id=record.reviewer_id)
        else:
            logger.info(
                "Review action recorded",
                extra={
                    "request_id": request.request_id,
                    "action": action.value,
                    "reviewer_id": record.reviewer_id,
                },
            )
        return TransitionResult(
            request=reviewed,
            previous_status=current,
            new_status=target,
            record=record,
        )

    def cancel(self, request: CertificateRequest, reason: str | None = None) -> CertificateRequest:
        """Withdraw a request that has not reached review; irreversible.

        Raises:
            AlreadyFinalizedError: If the request is terminal.
            InvalidTransitionError: If the request is under review or approved.
        """
        self._ensure_not_finalized(request, RequestStatus.CANCELLED)
        if not request.can_cancel:
            raise InvalidTransitionError(
                request.status,
                RequestStatus.CANCELLED,
                reason=f"Request in status {request.status.value} can no longer be cancelled",
            )
        cancelled = replace(
            request,
            status=RequestStatus.CANCELLED,
            cancellation_reason=(reason or "").strip() or None,
            current_reviewer_id=None,
            updated_at=self.now(),
        )
        self._log_transition(request, cancelled.status)
        return cancelled

    def link_certificate(
        self, request: CertificateRequest, certificate_id: str
    ) -> CertificateRequest:
        """Record the issued certificate and move the request to issued.

        Raises:
            PreconditionFailedError: If the request is not approved. This is a
                programming error in the caller, including a second link.
            ValidationError: If certificate_id is empty.
        """
        if request.status != RequestStatus.APPROVED:
            raise PreconditionFailedError(
                "link_certificate",
                f"request {request.request_id} is {request.status.value}, expected approved",
            )
        if not certificate_id.strip():
            raise ValidationError.single("certificate_id", "Certificate ID is required")

        StatusModel.require_transition(request.status, RequestStatus.ISSUED)
        now = self.now()
        issued = replace(
            request,
            status=RequestStatus.ISSUED,
            certificate_id=certificate_id,
            issued_at=_not_before(now, request.approved_at),
            updated_at=now,
        )
        self._log_transition(request, issued.status)
        return issued

    # -------------------------------------------------------------------------
    # Derived reads
    # -------------------------------------------------------------------------

    def days_since_created(self, request: CertificateRequest) -> int:
        return (self.now() - request.created_at).days

    def days_since_submitted(self, request: CertificateRequest) -> int | None:
        if request.submitted_at is None:
            return None
        return (self.now() - request.submitted_at).days

    def is_overdue(self, request: CertificateRequest) -> bool:
        """Submitted, not finished, and waiting longer than the standard SLA."""
        days = self.days_since_submitted(request)
        if days is None or StatusModel.is_terminal(request.status):
            return False
        return days > self._settings.standard_processing_days

    def is_draft_stale(self, request: CertificateRequest) -> bool:
        return (
            request.status == RequestStatus.DRAFT
            and self.days_since_created(request) > self._settings.max_draft_days
        )

    def latest_record(self, request: CertificateRequest) -> ApprovalRecord | None:
        return ApprovalLedger.for_request(request).latest()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _status_path(
        current: RequestStatus,
        target: RequestStatus,
        action: ApprovalAction,
    ) -> tuple[RequestStatus, ...]:
        """Statuses the request passes through for a review action."""
        if action in DECISION_ACTIONS:
            if current == RequestStatus.SUBMITTED:
                return (RequestStatus.UNDER_REVIEW, target)
            # A decision must move the request; re-deciding is never a no-op
            return (target,)
        return ()

    @staticmethod
    def _assignee(request: CertificateRequest, record: ApprovalRecord) -> tuple[str, str | None]:
        details = record.changes or {}
        if record.action == ApprovalAction.FORWARDED:
            if not request.status.requires_review:
                raise PreconditionFailedError(
                    "review",
                    f"request {request.request_id} is {request.status.value}; "
                    "only requests awaiting review can be forwarded",
                )
            assignee_id = str(details.get("assignee_id") or "").strip()
            if not assignee_id:
                raise ValidationError.single(
                    "changes.assignee_id", "Forwarding requires the new reviewer's ID"
                )
            return assignee_id, details.get("assignee_name")
        return (
            str(details.get("assignee_id") or record.reviewer_id),
            details.get("assignee_name", record.reviewer_name),
        )

    @staticmethod
    def _ensure_not_finalized(
        request: CertificateRequest,
        to_status: RequestStatus | None = None,
    ) -> None:
        if StatusModel.is_terminal(request.status):
            raise AlreadyFinalizedError(request.request_id, request.status, to_status)

    @staticmethod
    def _log_transition(
        request: CertificateRequest,
        to_status: RequestStatus,
        actor_id: str | None = None,
    ) -> None:
        logger.info(
            "Request transition completed",
            extra={
                "request_id": request.request_id,
                "from_status": request.status.value,
                "to_status": to_status.value,
                "actor_id": actor_id,
            },
        )
