"""Ordered sign-off chain attached to a certificate template.

Steps run in ascending ``order``. Gaps between orders are fine since
only relative position matters, but two steps sharing an order are
rejected because their relative position would be undefined.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from certflow.core.errors import (
    AlreadyFinalizedError,
    FieldViolation,
    PreconditionFailedError,
    ValidationError,
)
from certflow.models.entities import ApprovalStep
from certflow.models.enums import ApprovalStepStatus

logger = logging.getLogger(__name__)


def validate_chain(steps: Sequence[ApprovalStep]) -> tuple[ApprovalStep, ...]:
    """Check a chain and return it sorted by order.

    Raises:
        ValidationError: Listing every duplicated order and step id.
    """
    violations: list[FieldViolation] = []
    seen_orders: dict[int, str] = {}
    seen_ids: set[str] = set()

    for step in steps:
        if step.step_id in seen_ids:
            violations.append(
                FieldViolation(field="step_id", message=f"Duplicate step id {step.step_id}")
            )
        seen_ids.add(step.step_id)

        if step.order in seen_orders:
            violations.append(
                FieldViolation(
                    field="order",
                    message=(
                        f"Steps {seen_orders[step.order]} and {step.step_id} "
                        f"share order {step.order}"
                    ),
                )
            )
        else:
            seen_orders[step.order] = step.step_id

    if violations:
        raise ValidationError(violations)
    return tuple(sorted(steps, key=lambda step: step.order))


def next_pending(steps: Sequence[ApprovalStep]) -> ApprovalStep | None:
    """First pending step in execution order, required or not."""
    for step in sorted(steps, key=lambda step: step.order):
        if step.status == ApprovalStepStatus.PENDING:
            return step
    return None


def is_rejected(steps: Sequence[ApprovalStep]) -> bool:
    return any(step.status == ApprovalStepStatus.REJECTED for step in steps)


def is_complete(steps: Sequence[ApprovalStep]) -> bool:
    """Every required step approved and nothing rejected."""
    if is_rejected(steps):
        return False
    return all(
        step.status == ApprovalStepStatus.APPROVED for step in steps if step.required
    )


def _decide(
    steps: Sequence[ApprovalStep],
    step_id: str,
    approver_id: str,
    status: ApprovalStepStatus,
    now: datetime,
    comments: str | None,
) -> tuple[ApprovalStep, ...]:
    chain = validate_chain(steps)

    if is_rejected(chain):
        raise AlreadyFinalizedError(step_id, ApprovalStepStatus.REJECTED, status)

    target = next((step for step in chain if step.step_id == step_id), None)
    if target is None:
        raise ValidationError.single("step_id", f"Unknown approval step {step_id}")
    if target.status != ApprovalStepStatus.PENDING:
        raise AlreadyFinalizedError(step_id, target.status, status)
    if target.approver_id != approver_id:
        raise PreconditionFailedError(
            "decide_step",
            f"step {step_id} belongs to {target.approver_id}, not {approver_id}",
        )

    blocking = [
        step
        for step in chain
        if step.order < target.order
        and step.required
        and step.status == ApprovalStepStatus.PENDING
    ]
    if blocking:
        raise PreconditionFailedError(
            "decide_step",
            f"step {step_id} is waiting on earlier step {blocking[0].step_id}",
        )

    decided = replace(
        target,
        status=status,
        approved_at=now if status == ApprovalStepStatus.APPROVED else None,
        comments=comments,
    )
    logger.info(
        "Approval step decided",
        extra={"step_id": step_id, "approver_id": approver_id, "status": status.value},
    )
    return tuple(decided if step.step_id == step_id else step for step in chain)


def approve_step(
    steps: Sequence[ApprovalStep],
    step_id: str,
    approver_id: str,
    now: datetime,
    comments: str | None = None,
) -> tuple[ApprovalStep, ...]:
    """Approve one step of the chain.

    Args:
        steps: The current chain.
        step_id: Step being approved.
        approver_id: Must match the step's approver.
        now: Decision time.
        comments: Optional approver comments.

    Returns:
        The new chain, sorted by order.

    Raises:
        ValidationError: If the chain is malformed or the step is unknown.
        AlreadyFinalizedError: If the step or the chain was already decided.
        PreconditionFailedError: If an earlier required step is still pending
            or the approver does not own the step.
    """
    return _decide(steps, step_id, approver_id, ApprovalStepStatus.APPROVED, now, comments)


def reject_step(
    steps: Sequence[ApprovalStep],
    step_id: str,
    approver_id: str,
    now: datetime,
    comments: str | None = None,
) -> tuple[ApprovalStep, ...]:
    """Reject one step; a rejected chain accepts no further decisions."""
    return _decide(steps, step_id, approver_id, ApprovalStepStatus.REJECTED, now, comments)
