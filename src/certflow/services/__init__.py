"""certflow service layer.

Pure engine components (no I/O, injected clock):
- StatusModel: Transition legality for requests and certificates
- ApprovalLedger: Append-only reviewer action log
- RequestWorkflow: Certificate request state machine
- CertificateLifecycle: Issuance, sign-off chain, revocation, access counters
- ShareTokenGuard: Share token issuance and access checks
- VerificationTrail: Document verification history
- ReportingService: Statistics and sweeps

Persistence:
- CertificateWorkflowService: Applies the engine under optimistic concurrency
"""

from certflow.services.approval_ledger import ApprovalLedger, LedgerTally, latest_entry
from certflow.services.certificate_lifecycle import CertificateLifecycle
from certflow.services.reporting import (
    CertificateFilter,
    CertificateStatistics,
    ReportingService,
    SweepReport,
)
from certflow.services.request_workflow import RequestWorkflow, TransitionResult, validate_request
from certflow.services.share_tokens import ShareTokenGuard, hash_share_password
from certflow.services.status import StatusModel, can_transition, is_terminal
from certflow.services.verification import VerificationTrail
from certflow.services.workflow import CertificateWorkflowService, SharedResource

__all__ = [
    "ApprovalLedger",
    "CertificateFilter",
    "CertificateLifecycle",
    "CertificateStatistics",
    "CertificateWorkflowService",
    "LedgerTally",
    "ReportingService",
    "RequestWorkflow",
    "SharedResource",
    "ShareTokenGuard",
    "StatusModel",
    "SweepReport",
    "TransitionResult",
    "VerificationTrail",
    "can_transition",
    "hash_share_password",
    "is_terminal",
    "latest_entry",
    "validate_request",
]
