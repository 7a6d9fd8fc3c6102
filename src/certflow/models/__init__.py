"""Domain value types and enumerations.

Entities are immutable; the services in certflow.services build new
values for every change.
"""

from certflow.models.entities import (
    ApprovalRecord,
    ApprovalStep,
    Certificate,
    CertificateRequest,
    Document,
    IssuanceCredentials,
    ShareToken,
    VerificationStep,
    clamp_priority,
)
from certflow.models.enums import (
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
    display_name,
    parse_approval_action,
    priority_label,
)

__all__ = [
    "DEFAULT_PRIORITY",
    "MAX_PRIORITY",
    "MIN_PRIORITY",
    "ApprovalAction",
    "ApprovalRecord",
    "ApprovalStep",
    "ApprovalStepStatus",
    "Certificate",
    "CertificateRequest",
    "CertificateStatus",
    "CertificateType",
    "CertificateVerificationLevel",
    "Document",
    "DocumentVerificationLevel",
    "IssuanceCredentials",
    "RequestStatus",
    "ShareTarget",
    "ShareToken",
    "VerificationAction",
    "VerificationStatus",
    "VerificationStep",
    "clamp_priority",
    "display_name",
    "parse_approval_action",
    "priority_label",
]
