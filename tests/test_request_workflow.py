"""Tests for the certificate request state machine.

Tests cover:
- Creation defaults and priority clamping
- Submission validation (every missing field reported)
- Assignment and review decisions, including the submitted shortcut
- Terminal states refusing further actions
- Certificate linking
- SLA and stale-draft derived reads
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from certflow.core.config import WorkflowSettings
from certflow.core.errors import (
    AlreadyFinalizedError,
    InvalidTransitionError,
    PreconditionFailedError,
    ValidationError,
)
from certflow.models.enums import ApprovalAction, RequestStatus
from certflow.services.request_workflow import RequestWorkflow, validate_request
from tests.factories import (
    NOW,
    create_approved_request,
    create_record,
    create_request,
    create_submitted_request,
    create_under_review_request,
)


class TestCreate:
    """Tests for draft creation."""

    def test_create_builds_draft(self, workflow):
        """New requests start as drafts stamped with the clock."""
        request = workflow.create(
            request_id="REQ-100",
            client_id="client-1",
            client_name="Ada Lovelace",
            client_email="ada@example.org",
            organization_id="org-1",
            title="Transcript",
        )

        assert request.status == RequestStatus.DRAFT
        assert request.created_at == NOW
        assert request.updated_at == NOW
        assert request.priority == 3
        assert request.approval_history == ()

    def test_default_priority_comes_from_settings(self, clock):
        """The configured default priority is applied."""
        workflow = RequestWorkflow(WorkflowSettings(default_priority=4), clock)
        request = workflow.create(
            request_id="REQ-101",
            client_id="client-1",
            client_name="Ada",
            client_email="ada@example.org",
            organization_id="org-1",
        )

        assert request.priority == 4
        assert request.priority_label == "High"

    def test_priority_is_clamped_on_create(self, workflow):
        """Out-of-range priorities are forced into 1..5."""
        request = workflow.create(
            request_id="REQ-102",
            client_id="client-1",
            client_name="Ada",
            client_email="ada@example.org",
            organization_id="org-1",
            priority=99,
        )

        assert request.priority == 5

    def test_set_priority_clamps_low(self, workflow):
        """Negative priorities become the lowest level."""
        request = workflow.set_priority(create_request(), -5)

        assert request.priority == 1

    @pytest.mark.parametrize("priority", [None, "high"])
    def test_non_integer_priority_rejected(self, workflow, priority):
        """A missing or non-numeric priority is a validation error on priority."""
        with pytest.raises(ValidationError) as exc_info:
            workflow.set_priority(create_request(), priority)
        assert exc_info.value.fields == ["priority"]

        with pytest.raises(ValidationError) as exc_info:
            workflow.update_content(create_request(), priority=priority)
        assert exc_info.value.fields == ["priority"]


class TestUpdateContent:
    """Tests for client edits."""

    def test_update_draft(self, workflow):
        """Editable fields can be changed on a draft."""
        request = workflow.update_content(create_request(), title="New title")

        assert request.title == "New title"
        assert request.updated_at == NOW

    def test_update_submitted_fails(self, workflow):
        """Submitted requests are read-only for the client."""
        with pytest.raises(PreconditionFailedError):
            workflow.update_content(create_submitted_request(), title="Late edit")

    def test_update_unknown_field_fails(self, workflow):
        """Workflow fields cannot be edited directly."""
        with pytest.raises(ValidationError) as exc_info:
            workflow.update_content(create_request(), status=RequestStatus.APPROVED)

        assert exc_info.value.fields == ["status"]

    def test_update_cancelled_fails(self, workflow):
        """Terminal requests cannot be edited."""
        with pytest.raises(AlreadyFinalizedError):
            workflow.update_content(create_request(status=RequestStatus.CANCELLED), title="x")


class TestSubmit:
    """Tests for submission."""

    def test_submit_draft(self, workflow):
        """A complete draft becomes submitted."""
        submitted = workflow.submit(create_request())

        assert submitted.status == RequestStatus.SUBMITTED
        assert submitted.submitted_at == NOW

    def test_submit_reports_every_missing_field(self, workflow):
        """All missing fields are listed, not only the first one."""
        request = create_request(title="", purpose="  ", organization_id="")

        with pytest.raises(ValidationError) as exc_info:
            workflow.submit(request)

        assert set(exc_info.value.fields) == {"title", "purpose", "organization_id"}

    def test_submit_rejects_malformed_email(self, workflow):
        """An email without @ is refused."""
        with pytest.raises(ValidationError) as exc_info:
            workflow.submit(create_request(client_email="ada.example.org"))

        assert exc_info.value.fields == ["client_email"]

    def test_resubmit_after_changes_keeps_first_submission_time(self, workflow):
        """Resubmission keeps the original submitted_at."""
        first = NOW - timedelta(hours=12)
        request = create_request(status=RequestStatus.CHANGES_REQUESTED, submitted_at=first)

        resubmitted = workflow.submit(request)

        assert resubmitted.status == RequestStatus.SUBMITTED
        assert resubmitted.submitted_at == first

    def test_submit_twice_fails(self, workflow):
        """Submitted requests cannot be submitted again."""
        with pytest.raises(InvalidTransitionError):
            workflow.submit(create_submitted_request())

    def test_submit_does_not_modify_input(self, workflow):
        """The input value is never changed."""
        request = create_request()
        workflow.submit(request)

        assert request.status == RequestStatus.DRAFT


class TestAssign:
    """Tests for reviewer assignment."""

    def test_assign_submitted(self, workflow):
        """Assignment records the reviewer without moving the status."""
        assigned = workflow.assign(create_submitted_request(), "ca-2", "Dr. Okafor")

        assert assigned.status == RequestStatus.SUBMITTED
        assert assigned.assigned_ca_id == "ca-2"
        assert assigned.assigned_ca_name == "Dr. Okafor"
        assert assigned.assigned_at == NOW
        assert not assigned.can_assign

    def test_assign_twice_fails(self, workflow):
        """An assigned request cannot be assigned again."""
        assigned = workflow.assign(create_submitted_request(), "ca-2")

        with pytest.raises(PreconditionFailedError):
            workflow.assign(assigned, "ca-3")

    def test_assign_draft_fails(self, workflow):
        """Only submitted requests can be assigned."""
        with pytest.raises(PreconditionFailedError):
            workflow.assign(create_request(), "ca-2")

    def test_assign_requires_reviewer(self, workflow):
        """An empty reviewer id is a validation error."""
        with pytest.raises(ValidationError):
            workflow.assign(create_submitted_request(), " ")


class TestReview:
    """Tests for reviewer decisions."""

    def test_reject_from_submitted(self, workflow):
        """Draft to rejected: the full client-to-reviewer path."""
        request = workflow.submit(create_request())
        request = workflow.assign(request, "ca-1", "Dr. Chen")
        assert not request.can_assign

        result = workflow.review(
            request,
            create_record(ApprovalAction.REJECTED, comment="incomplete transcript"),
        )

        assert result.previous_status == RequestStatus.SUBMITTED
        assert result.new_status == RequestStatus.REJECTED
        assert result.changed
        assert result.request.rejection_reason == "incomplete transcript"
        assert result.request.current_reviewer_id is None
        assert len(result.request.approval_history) == 1

        with pytest.raises(AlreadyFinalizedError):
            workflow.review(result.request, create_record(ApprovalAction.APPROVED))
        with pytest.raises(AlreadyFinalizedError):
            workflow.submit(result.request)

    def test_reject_requires_comment(self, workflow):
        """A rejection without a comment is refused."""
        with pytest.raises(ValidationError) as exc_info:
            workflow.review(create_under_review_request(), create_record(ApprovalAction.REJECTED))

        assert exc_info.value.fields == ["comment"]

    def test_approve_under_review(self, workflow):
        """Approval stamps approved_at."""
        result = workflow.review(create_under_review_request(), create_record(ApprovalAction.APPROVED))

        assert result.new_status == RequestStatus.APPROVED
        assert result.request.approved_at == NOW

    def test_approve_submitted_sets_current_reviewer(self, workflow):
        """A decision on a submitted request passes through under review."""
        result = workflow.review(
            create_submitted_request(),
            create_record(ApprovalAction.APPROVED, reviewer_id="ca-9"),
        )

        assert result.new_status == RequestStatus.APPROVED
        assert result.request.current_reviewer_id == "ca-9"

    def test_approve_draft_fails(self, workflow):
        """Drafts cannot be decided."""
        with pytest.raises(InvalidTransitionError):
            workflow.review(create_request(), create_record(ApprovalAction.APPROVED))

    def test_approve_twice_fails(self, workflow):
        """An approved request cannot be approved again."""
        with pytest.raises(InvalidTransitionError):
            workflow.review(create_approved_request(), create_record(ApprovalAction.APPROVED))

    def test_request_changes(self, workflow):
        """Changes requested returns the request to the client."""
        result = workflow.review(
            create_under_review_request(),
            create_record(ApprovalAction.CHANGES_REQUESTED, comment="add grades"),
        )

        assert result.new_status == RequestStatus.CHANGES_REQUESTED
        assert result.request.change_request_comments == "add grades"
        assert result.request.status.can_edit

    def test_info_request_keeps_status(self, workflow):
        """Information requests only append to the ledger."""
        request = create_under_review_request()
        result = workflow.review(request, create_record(ApprovalAction.INFO_REQUESTED))

        assert not result.changed
        assert result.request.status == RequestStatus.UNDER_REVIEW
        assert len(result.request.approval_history) == 1

    def test_assigned_action_sets_assignee(self, workflow):
        """The assigned action records its reviewer as assignee."""
        result = workflow.review(
            create_submitted_request(),
            create_record(ApprovalAction.ASSIGNED, reviewer_id="ca-5"),
        )

        assert result.new_status == RequestStatus.SUBMITTED
        assert result.request.assigned_ca_id == "ca-5"
        assert result.request.assigned_at == NOW

    def test_assigned_action_on_draft_fails(self, workflow):
        """Assigning a draft would skip submission checks."""
        with pytest.raises(InvalidTransitionError):
            workflow.review(create_request(), create_record(ApprovalAction.ASSIGNED))

    def test_forward_moves_reviewer(self, workflow):
        """Forwarding hands the request to another reviewer."""
        result = workflow.review(
            create_under_review_request(),
            create_record(
                ApprovalAction.FORWARDED,
                changes={"assignee_id": "ca-7", "assignee_name": "Dr. Ito"},
            ),
        )

        assert result.request.assigned_ca_id == "ca-7"
        assert result.request.current_reviewer_id == "ca-7"
        assert result.new_status == RequestStatus.UNDER_REVIEW

    def test_forward_requires_target(self, workflow):
        """Forwarding without a new reviewer is refused."""
        with pytest.raises(ValidationError):
            workflow.review(create_under_review_request(), create_record(ApprovalAction.FORWARDED))

    def test_forward_approved_fails(self, workflow):
        """Only requests awaiting review can be forwarded."""
        with pytest.raises(PreconditionFailedError):
            workflow.review(
                create_approved_request(),
                create_record(ApprovalAction.FORWARDED, changes={"assignee_id": "ca-7"}),
            )

    @pytest.mark.parametrize(
        ("action", "comment"),
        [
            (ApprovalAction.APPROVED, None),
            (ApprovalAction.REJECTED, "forged seal"),
            (ApprovalAction.CHANGES_REQUESTED, "add grades"),
        ],
    )
    def test_unassigned_reviewer_cannot_decide(self, workflow, action, comment):
        """Only the assigned reviewer may decide an assigned request."""
        request = workflow.assign(create_submitted_request(), "ca-1")

        with pytest.raises(PreconditionFailedError) as exc_info:
            workflow.review(request, create_record(action, comment=comment, reviewer_id="ca-2"))

        assert exc_info.value.operation == "review"
        assert request.status == RequestStatus.SUBMITTED
        assert request.approval_history == ()

    def test_admin_may_decide_assigned_request(self, workflow):
        """Admins may decide requests assigned to another reviewer."""
        request = workflow.assign(create_submitted_request(), "ca-1")
        record = replace(
            create_record(ApprovalAction.APPROVED, reviewer_id="admin-1"), reviewer_role="admin"
        )

        result = workflow.review(request, record)

        assert result.new_status == RequestStatus.APPROVED
        assert result.request.assigned_ca_id == "ca-1"

    def test_unassigned_request_open_to_any_reviewer(self, workflow):
        """Without an assignee any reviewer may decide."""
        result = workflow.review(
            create_submitted_request(),
            create_record(ApprovalAction.APPROVED, reviewer_id="ca-4"),
        )

        assert result.new_status == RequestStatus.APPROVED

    @pytest.mark.parametrize("request_factory", [create_request, create_approved_request])
    def test_info_request_needs_pending_review(self, workflow, request_factory):
        """Information can only be requested while the request awaits review."""
        with pytest.raises(PreconditionFailedError):
            workflow.review(request_factory(), create_record(ApprovalAction.INFO_REQUESTED))


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.parametrize(
        "status",
        [RequestStatus.DRAFT, RequestStatus.SUBMITTED, RequestStatus.CHANGES_REQUESTED],
    )
    def test_cancel_allowed(self, workflow, status):
        """Requests not yet under review can be withdrawn."""
        cancelled = workflow.cancel(create_request(status=status), reason="no longer needed")

        assert cancelled.status == RequestStatus.CANCELLED
        assert cancelled.cancellation_reason == "no longer needed"

    def test_cancel_under_review_fails(self, workflow):
        """Requests under review cannot be withdrawn."""
        with pytest.raises(InvalidTransitionError):
            workflow.cancel(create_under_review_request())

    def test_cancel_twice_fails(self, workflow):
        """Cancellation is irreversible."""
        cancelled = workflow.cancel(create_request())

        with pytest.raises(AlreadyFinalizedError):
            workflow.cancel(cancelled)


class TestLinkCertificate:
    """Tests for linking the issued certificate."""

    def test_link_approved(self, workflow):
        """Linking moves an approved request to issued."""
        issued = workflow.link_certificate(create_approved_request(), "CERT-1")

        assert issued.status == RequestStatus.ISSUED
        assert issued.certificate_id == "CERT-1"
        assert issued.issued_at == NOW
        assert validate_request(issued) == []

    def test_link_twice_fails(self, workflow):
        """A second link is a caller error."""
        issued = workflow.link_certificate(create_approved_request(), "CERT-1")

        with pytest.raises(PreconditionFailedError):
            workflow.link_certificate(issued, "CERT-2")

    def test_link_under_review_fails(self, workflow):
        """Only approved requests can be linked."""
        with pytest.raises(PreconditionFailedError):
            workflow.link_certificate(create_under_review_request(), "CERT-1")

    def test_issued_at_not_before_approval(self, workflow, clock):
        """A clock that steps backwards cannot break timestamp order."""
        clock.now = NOW - timedelta(hours=3)
        issued = workflow.link_certificate(create_approved_request(), "CERT-1")

        assert issued.issued_at == NOW - timedelta(hours=1)


class TestDerivedReads:
    """Tests for SLA and staleness reads."""

    def test_overdue_after_standard_processing_days(self, workflow, clock):
        """A submitted request waiting more than seven days is overdue."""
        request = create_submitted_request()

        clock.advance(days=7)
        assert workflow.days_since_submitted(request) == 7
        assert not workflow.is_overdue(request)

        clock.advance(days=1)
        assert workflow.is_overdue(request)

    def test_terminal_requests_are_never_overdue(self, workflow, clock):
        """Finished requests do not count against the SLA."""
        request = create_submitted_request(
            status=RequestStatus.REJECTED, rejection_reason="forged"
        )
        clock.advance(days=30)

        assert not workflow.is_overdue(request)

    def test_unsubmitted_requests_are_never_overdue(self, workflow, clock):
        """Drafts have no submission time to measure against."""
        clock.advance(days=30)

        assert workflow.days_since_submitted(create_request()) is None
        assert not workflow.is_overdue(create_request())

    def test_stale_draft(self, workflow, clock):
        """Drafts older than the maximum age are stale."""
        request = create_request()

        clock.advance(days=29)
        assert not workflow.is_draft_stale(request)

        clock.advance(days=1)
        assert workflow.days_since_created(request) == 31
        assert workflow.is_draft_stale(request)

    def test_latest_record(self, workflow):
        """The latest ledger entry is exposed."""
        request = create_under_review_request()
        result = workflow.review(request, create_record(ApprovalAction.INFO_REQUESTED))

        assert workflow.latest_record(result.request) is result.record
        assert workflow.latest_record(request) is None


class TestValidateRequest:
    """Tests for the cross-field consistency check."""

    def test_valid_request(self):
        """Factory requests are consistent."""
        assert validate_request(create_approved_request()) == []

    def test_issued_without_certificate(self):
        """Issued requests must carry a certificate id."""
        violations = validate_request(create_approved_request(status=RequestStatus.ISSUED))

        assert [v.field for v in violations] == ["certificate_id"]

    def test_timestamps_out_of_order(self):
        """approved_at before submitted_at is flagged."""
        request = create_approved_request(approved_at=NOW - timedelta(days=3))

        assert "approved_at" in [v.field for v in validate_request(request)]
