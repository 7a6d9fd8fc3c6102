"""Read-only reporting over certificates and requests.

Covers:
- Aggregate certificate statistics (by status, type and issue month)
- Filtering certificates for listings
- Sweeps for overdue requests, stale drafts and near-expiry certificates

Sweeps only report; nothing here writes. Their absence never makes an
expiry or activity read incorrect because those are derived at read time.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from certflow.core.clock import Clock, utc_now
from certflow.core.config import Settings
from certflow.models.entities import Certificate, CertificateRequest
from certflow.models.enums import CertificateStatus, CertificateType, RequestStatus
from certflow.services.certificate_lifecycle import CertificateLifecycle
from certflow.services.request_workflow import RequestWorkflow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CertificateStatistics:
    total_certificates: int
    issued_certificates: int
    pending_certificates: int
    revoked_certificates: int
    expired_certificates: int
    shared_certificates: int
    certificates_by_type: dict[str, int] = field(default_factory=dict)
    certificates_by_month: dict[str, int] = field(default_factory=dict)
    certificates_by_status: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CertificateFilter:
    """Criteria for listing certificates; unset fields match everything."""

    statuses: tuple[CertificateStatus, ...] | None = None
    types: tuple[CertificateType, ...] | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    issuer_id: str | None = None
    recipient_id: str | None = None
    organization_id: str | None = None
    search_term: str | None = None
    is_expired: bool | None = None
    is_verified: bool | None = None


@dataclass(frozen=True, slots=True)
class SweepReport:
    """Result of one reporting sweep."""

    overdue_request_ids: list[str]
    stale_draft_ids: list[str]
    near_expiry_certificate_ids: list[str]
    swept_at: datetime

    @property
    def total_flagged(self) -> int:
        return (
            len(self.overdue_request_ids)
            + len(self.stale_draft_ids)
            + len(self.near_expiry_certificate_ids)
        )


class ReportingService:
    """Statistics, filters and sweeps built on the lifecycle derived reads."""

    def __init__(self, settings: Settings | None = None, clock: Clock = utc_now) -> None:
        settings = settings or Settings()
        self._clock = clock
        self._lifecycle = CertificateLifecycle(settings.certificate, clock)
        self._workflow = RequestWorkflow(settings.workflow, clock)

    def certificate_statistics(self, certificates: Iterable[Certificate]) -> CertificateStatistics:
        """Aggregate counts; revoked and expired are counted by effective status."""
        now = self._clock()
        certificates = list(certificates)

        by_status: Counter[str] = Counter()
        by_type: Counter[str] = Counter()
        by_month: Counter[str] = Counter()
        shared = 0

        for certificate in certificates:
            by_status[self._lifecycle.effective_status(certificate, now).value] += 1
            by_type[certificate.certificate_type.value] += 1
            if certificate.status == CertificateStatus.ISSUED:
                by_month[certificate.issued_at.strftime("%Y-%m")] += 1
            if certificate.share_count > 0 or certificate.share_tokens:
                shared += 1

        return CertificateStatistics(
            total_certificates=len(certificates),
            issued_certificates=by_status[CertificateStatus.ISSUED.value],
            pending_certificates=by_status[CertificateStatus.PENDING.value],
            revoked_certificates=by_status[CertificateStatus.REVOKED.value],
            expired_certificates=by_status[CertificateStatus.EXPIRED.value],
            shared_certificates=shared,
            certificates_by_type=dict(by_type),
            certificates_by_month=dict(sorted(by_month.items())),
            certificates_by_status=dict(by_status),
        )

    def matches(self, certificate: Certificate, criteria: CertificateFilter) -> bool:
        now = self._clock()
        if criteria.statuses is not None and certificate.status not in criteria.statuses:
            return False
        if criteria.types is not None and certificate.certificate_type not in criteria.types:
            return False
        if criteria.start_date is not None and certificate.issued_at < criteria.start_date:
            return False
        if criteria.end_date is not None and certificate.issued_at > criteria.end_date:
            return False
        for attribute in ("issuer_id", "recipient_id", "organization_id"):
            wanted = getattr(criteria, attribute)
            if wanted is not None and getattr(certificate, attribute) != wanted:
                return False
        if criteria.search_term:
            term = criteria.search_term.lower()
            haystack = " ".join(
                (certificate.title, certificate.description, certificate.recipient_name)
            ).lower()
            if term not in haystack:
                return False
        if (
            criteria.is_expired is not None
            and self._lifecycle.is_expired(certificate, now) != criteria.is_expired
        ):
            return False
        if criteria.is_verified is not None and certificate.is_verified != criteria.is_verified:
            return False
        return True

    def filter_certificates(
        self, certificates: Iterable[Certificate], criteria: CertificateFilter
    ) -> list[Certificate]:
        return [certificate for certificate in certificates if self.matches(certificate, criteria)]

    def overdue_requests(self, requests: Iterable[CertificateRequest]) -> list[CertificateRequest]:
        """Requests past the review SLA, oldest submission first."""
        overdue = [request for request in requests if self._workflow.is_overdue(request)]
        return sorted(overdue, key=lambda request: request.submitted_at)

    def stale_drafts(self, requests: Iterable[CertificateRequest]) -> list[CertificateRequest]:
        return [request for request in requests if self._workflow.is_draft_stale(request)]

    def requests_by_status(
        self, requests: Iterable[CertificateRequest]
    ) -> dict[RequestStatus, int]:
        counts = Counter(request.status for request in requests)
        return {status: counts.get(status, 0) for status in RequestStatus}

    def sweep(
        self,
        requests: Iterable[CertificateRequest],
        certificates: Iterable[Certificate],
    ) -> SweepReport:
        """Flag overdue requests, stale drafts and near-expiry certificates."""
        requests = list(requests)
        report = SweepReport(
            overdue_request_ids=[r.request_id for r in self.overdue_requests(requests)],
            stale_draft_ids=[r.request_id for r in self.stale_drafts(requests)],
            near_expiry_certificate_ids=[
                c.certificate_id for c in self._lifecycle.find_near_expiry(certificates)
            ],
            swept_at=self._clock(),
        )
        logger.info(
            "Reporting sweep completed",
            extra={
                "overdue": len(report.overdue_request_ids),
                "stale_drafts": len(report.stale_draft_ids),
                "near_expiry": len(report.near_expiry_certificate_ids),
            },
        )
        return report
