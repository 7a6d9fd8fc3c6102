"""Append-only ledger of reviewer actions on a certificate request.

The ledger never touches persistence: it takes the current request
status, validates the append, and returns a new ledger value together
with the request status the action implies.

"Latest" is the entry with the greatest timestamp; entries that share a
timestamp are ordered by insertion, so the one appended last wins. The
verification trail uses the same rule through latest_entry().
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from certflow.core.errors import AlreadyFinalizedError, ValidationError
from certflow.models.entities import ApprovalRecord, CertificateRequest
from certflow.models.enums import ApprovalAction, RequestStatus
from certflow.services.status import StatusModel

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Status implied by each action; None means "status unchanged"
ACTION_STATUS: dict[ApprovalAction, RequestStatus | None] = {
    ApprovalAction.APPROVED: RequestStatus.APPROVED,
    ApprovalAction.REJECTED: RequestStatus.REJECTED,
    ApprovalAction.CHANGES_REQUESTED: RequestStatus.CHANGES_REQUESTED,
    ApprovalAction.ASSIGNED: RequestStatus.SUBMITTED,
    ApprovalAction.FORWARDED: None,
    ApprovalAction.INFO_REQUESTED: None,
}


def latest_entry(entries: Sequence[T], timestamp_of: Callable[[T], datetime]) -> T | None:
    """Return the entry with the maximum timestamp.

    Ties are broken by insertion sequence: the later entry wins.
    """
    if not entries:
        return None
    _, winner = max(enumerate(entries), key=lambda pair: (timestamp_of(pair[1]), pair[0]))
    return winner


def derive_status(action: ApprovalAction, current: RequestStatus) -> RequestStatus:
    """Map an approval action onto the request status it implies."""
    implied = ACTION_STATUS[action]
    return current if implied is None else implied


@dataclass(frozen=True, slots=True)
class LedgerTally:
    """Positive vs. negative action counts, for reporting only."""

    positive: int
    negative: int

    @property
    def net(self) -> int:
        return self.positive - self.negative


@dataclass(frozen=True, slots=True)
class ApprovalLedger:
    """Ordered, append-only log of ApprovalRecords for one request.

    Example:
        ledger = ApprovalLedger.for_request(request)
        ledger, new_status = ledger.append(record, request.status)
    """

    request_id: str
    records: tuple[ApprovalRecord, ...] = ()

    @classmethod
    def for_request(cls, request: CertificateRequest) -> ApprovalLedger:
        return cls(request_id=request.request_id, records=request.approval_history)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ApprovalRecord]:
        return iter(self.records)

    def append(
        self,
        record: ApprovalRecord,
        current_status: RequestStatus,
    ) -> tuple[ApprovalLedger, RequestStatus]:
        """Append a record and derive the resulting request status.

        Args:
            record: The reviewer action to add.
            current_status: Status of the owning request before the action.

        Returns:
            Tuple of (new ledger, status implied by the action).

        Raises:
            AlreadyFinalizedError: If the request is in a terminal status.
            ValidationError: If a record with the same id was already appended.
        """
        if StatusModel.is_terminal(current_status):
            logger.warning(
                "Ledger append refused on finalized request",
                extra={
                    "request_id": self.request_id,
                    "status": current_status.value,
                    "action": record.action.value,
                },
            )
            raise AlreadyFinalizedError(self.request_id, current_status)

        if any(existing.record_id == record.record_id for existing in self.records):
            raise ValidationError.single(
                "record_id", f"Approval record {record.record_id} was already appended"
            )

        new_status = derive_status(record.action, current_status)
        ledger = ApprovalLedger(request_id=self.request_id, records=(*self.records, record))
        return ledger, new_status

    def latest(self) -> ApprovalRecord | None:
        """Return the most recent record (last appended wins on equal timestamps)."""
        return latest_entry(self.records, lambda record: record.timestamp)

    def chronological(self) -> list[ApprovalRecord]:
        """Records ordered by timestamp, ties kept in insertion order."""
        return sorted(self.records, key=lambda record: record.timestamp)

    def tally(self) -> LedgerTally:
        """Count positive (approved, assigned) and negative (rejected) actions."""
        positive = sum(1 for record in self.records if record.is_positive)
        negative = sum(1 for record in self.records if record.is_negative)
        return LedgerTally(positive=positive, negative=negative)
