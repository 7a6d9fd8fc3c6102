"""Store-backed workflow service.

Applies the pure engine (RequestWorkflow, CertificateLifecycle,
ShareTokenGuard, VerificationTrail) to persisted entities. Every
mutation follows the same cycle:

    load (payload + version) -> pure transition -> save(expected_version)

A ConcurrentModificationError from the save reloads the entity and
re-runs the transition on the fresh value, up to
``workflow.cas_max_attempts`` times. Any other error propagates without
writing, so the stored entity is never left half-changed.

Notifications are not sent here; callers inspect the returned values
(for example TransitionResult.new_status) and dispatch them after the
write has succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, TypeVar

from certflow.core.clock import Clock, utc_now
from certflow.core.config import Settings
from certflow.core.errors import (
    ConcurrentModificationError,
    PreconditionFailedError,
    TokenInvalidError,
)
from certflow.db.store import DocumentStore
from certflow.models.entities import (
    ApprovalRecord,
    Certificate,
    CertificateRequest,
    Document,
    IssuanceCredentials,
    ShareToken,
    VerificationStep,
)
from certflow.models.enums import ShareTarget
from certflow.services.certificate_lifecycle import CertificateLifecycle
from certflow.services.reporting import ReportingService, SweepReport
from certflow.services.request_workflow import RequestWorkflow, TransitionResult
from certflow.services.serialization import (
    SHARE_TOKEN_INDEX,
    collection_for,
    from_payload,
    to_payload,
)
from certflow.services.share_tokens import ShareTokenGuard, find_token
from certflow.services.verification import VerificationTrail

logger = logging.getLogger(__name__)

E = TypeVar("E")
R = TypeVar("R")

_TARGET_TYPES: dict[ShareTarget, type] = {
    ShareTarget.CERTIFICATE: Certificate,
    ShareTarget.DOCUMENT: Document,
}


@dataclass(frozen=True, slots=True)
class SharedResource:
    """What a successful share-token access returns.

    Attributes:
        target: Kind of resource opened.
        resource: The certificate or document after the access was counted.
        token: The token after its use was counted.
    """

    target: ShareTarget
    resource: Certificate | Document
    token: ShareToken

    @property
    def resource_id(self) -> str:
        return self.token.resource_id


class CertificateWorkflowService:
    """Async facade that persists every engine transition under CAS.

    Example:
        service = CertificateWorkflowService(InMemoryDocumentStore())
        request = await service.create_request(request_id="REQ-1", ...)
        request = await service.submit_request("REQ-1")
        result = await service.review_request("REQ-1", record)
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        token_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or Settings()
        self._clock = clock
        self.requests = RequestWorkflow(self._settings.workflow, clock)
        self.certificates = CertificateLifecycle(self._settings.certificate, clock)
        self.share_tokens = ShareTokenGuard(self._settings.share, clock, token_factory)
        self.verification = VerificationTrail(self._settings.certificate, clock)
        self.reporting = ReportingService(self._settings, clock)

    # -------------------------------------------------------------------------
    # Persistence cycle
    # -------------------------------------------------------------------------

    async def _get(self, entity_type: type[E], entity_id: str) -> E:
        stored = await self._store.load(collection_for(entity_type), entity_id)
        return from_payload(entity_type, stored.payload)

    async def _insert(self, entity: Any, entity_id: str) -> None:
        await self._store.create(collection_for(type(entity)), entity_id, to_payload(entity))

    async def _mutate(
        self,
        entity_type: type[E],
        entity_id: str,
        transition: Callable[[E], tuple[E, R]],
    ) -> R:
        """Load, transform and save one entity, retrying on version conflicts.

        Args:
            entity_type: Entity class; selects the collection.
            entity_id: Document id within the collection.
            transition: Pure function returning (new entity, result).

        Returns:
            The transition's result for the attempt that was saved.

        Raises:
            ConcurrentModificationError: If every attempt lost the race.
        """
        collection = collection_for(entity_type)
        max_attempts = self._settings.workflow.cas_max_attempts

        for attempt in range(1, max_attempts + 1):
            stored = await self._store.load(collection, entity_id)
            updated, result = transition(from_payload(entity_type, stored.payload))
            try:
                await self._store.save(
                    collection, entity_id, to_payload(updated), expected_version=stored.version
                )
            except ConcurrentModificationError:
                if attempt == max_attempts:
                    logger.warning(
                        "Giving up after concurrent modifications",
                        extra={
                            "collection": collection,
                            "document_id": entity_id,
                            "attempts": attempt,
                        },
                    )
                    raise
                logger.debug(
                    "Concurrent modification, retrying",
                    extra={"collection": collection, "document_id": entity_id, "attempt": attempt},
                )
                continue
            return result

        msg = "cas_max_attempts must be at least 1"
        raise RuntimeError(msg)

    async def _update(
        self,
        entity_type: type[E],
        entity_id: str,
        transition: Callable[[E], E],
    ) -> E:
        def apply(entity: E) -> tuple[E, E]:
            updated = transition(entity)
            return updated, updated

        return await self._mutate(entity_type, entity_id, apply)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def create_request(self, **fields: Any) -> CertificateRequest:
        """Create and store a draft request (see RequestWorkflow.create)."""
        request = self.requests.create(**fields)
        await self._insert(request, request.request_id)
        return request

    async def get_request(self, request_id: str) -> CertificateRequest:
        return await self._get(CertificateRequest, request_id)

    async def update_request(self, request_id: str, **changes: Any) -> CertificateRequest:
        return await self._update(
            CertificateRequest,
            request_id,
            lambda request: self.requests.update_content(request, **changes),
        )

    async def set_request_priority(self, request_id: str, priority: int) -> CertificateRequest:
        return await self._update(
            CertificateRequest,
            request_id,
            lambda request: self.requests.set_priority(request, priority),
        )

    async def submit_request(self, request_id: str) -> CertificateRequest:
        return await self._update(CertificateRequest, request_id, self.requests.submit)

    async def assign_reviewer(
        self,
        request_id: str,
        reviewer_id: str,
        reviewer_name: str | None = None,
    ) -> CertificateRequest:
        return await self._update(
            CertificateRequest,
            request_id,
            lambda request: self.requests.assign(request, reviewer_id, reviewer_name),
        )

    async def start_review(self, request_id: str, reviewer_id: str) -> CertificateRequest:
        return await self._update(
            CertificateRequest,
            request_id,
            lambda request: self.requests.start_review(request, reviewer_id),
        )

    async def review_request(self, request_id: str, record: ApprovalRecord) -> TransitionResult:
        """Append a reviewer action and its status change as one write."""

        def apply(request: CertificateRequest) -> tuple[CertificateRequest, TransitionResult]:
            result = self.requests.review(request, record)
            return result.request, result

        return await self._mutate(CertificateRequest, request_id, apply)

    async def cancel_request(
        self, request_id: str, reason: str | None = None
    ) -> CertificateRequest:
        return await self._update(
            CertificateRequest,
            request_id,
            lambda request: self.requests.cancel(request, reason),
        )

    # -------------------------------------------------------------------------
    # Certificates
    # -------------------------------------------------------------------------

    async def issue_certificate(
        self,
        request_id: str,
        credentials: IssuanceCredentials,
        *,
        certificate_id: str,
        **options: Any,
    ) -> tuple[CertificateRequest, Certificate]:
        """Issue a certificate for an approved request and link it.

        The certificate is built (and validated) first, the request is then
        moved to issued under CAS, and only then is the certificate stored.
        Two racing issuances for one request therefore cannot both store a
        certificate: the loser fails PreconditionFailedError on the link.

        Returns:
            Tuple of (issued request, stored certificate).
        """
        request = await self.get_request(request_id)
        certificate = self.certificates.issue(
            request, credentials, certificate_id=certificate_id, **options
        )
        if await self._store.find(collection_for(Certificate), certificate_id) is not None:
            raise PreconditionFailedError(
                "issue_certificate", f"certificate {certificate_id} already exists"
            )
        linked = await self._update(
            CertificateRequest,
            request_id,
            lambda current: self.requests.link_certificate(current, certificate_id),
        )
        await self._insert(certificate, certificate_id)
        return linked, certificate

    async def draft_certificate(
        self,
        request_id: str,
        credentials: IssuanceCredentials,
        *,
        certificate_id: str,
        **options: Any,
    ) -> Certificate:
        """Store a draft certificate that must pass its sign-off chain."""
        request = await self.get_request(request_id)
        certificate = self.certificates.draft(
            request, credentials, certificate_id=certificate_id, **options
        )
        await self._insert(certificate, certificate_id)
        return certificate

    async def get_certificate(self, certificate_id: str) -> Certificate:
        return await self._get(Certificate, certificate_id)

    async def submit_certificate_for_approval(self, certificate_id: str) -> Certificate:
        return await self._update(
            Certificate, certificate_id, self.certificates.submit_for_approval
        )

    async def approve_certificate_step(
        self,
        certificate_id: str,
        step_id: str,
        approver_id: str,
        comments: str | None = None,
    ) -> Certificate:
        return await self._update(
            Certificate,
            certificate_id,
            lambda certificate: self.certificates.approve_step(
                certificate, step_id, approver_id, comments
            ),
        )

    async def reject_certificate_step(
        self,
        certificate_id: str,
        step_id: str,
        approver_id: str,
        comments: str | None = None,
    ) -> Certificate:
        return await self._update(
            Certificate,
            certificate_id,
            lambda certificate: self.certificates.reject_step(
                certificate, step_id, approver_id, comments
            ),
        )

    async def issue_approved_certificate(
        self, request_id: str, certificate_id: str
    ) -> tuple[CertificateRequest, Certificate]:
        """Issue a signed-off certificate and link it to its request.

        The issuance is checked on the current certificate before the
        request is linked, so a rejected or lapsed certificate never
        leaves the request pointing at it.
        """
        certificate = await self.get_certificate(certificate_id)
        if certificate.request_id != request_id:
            raise PreconditionFailedError(
                "issue_approved_certificate",
                f"certificate {certificate_id} belongs to request {certificate.request_id}",
            )
        self.certificates.issue_approved(certificate)
        linked = await self._update(
            CertificateRequest,
            request_id,
            lambda current: self.requests.link_certificate(current, certificate_id),
        )
        issued = await self._update(
            Certificate, certificate_id, self.certificates.issue_approved
        )
        return linked, issued

    async def revoke_certificate(
        self, certificate_id: str, reason: str, revoked_by: str
    ) -> Certificate:
        return await self._update(
            Certificate,
            certificate_id,
            lambda certificate: self.certificates.revoke(certificate, reason, revoked_by),
        )

    async def record_certificate_access(self, certificate_id: str) -> Certificate:
        return await self._update(Certificate, certificate_id, self.certificates.record_access)

    async def record_certificate_download(self, certificate_id: str) -> Certificate:
        return await self._update(Certificate, certificate_id, self.certificates.record_download)

    async def set_certificate_visibility(
        self,
        certificate_id: str,
        *,
        is_public: bool | None = None,
        allowed_viewers: list[str] | None = None,
    ) -> Certificate:
        return await self._update(
            Certificate,
            certificate_id,
            lambda certificate: self.certificates.set_visibility(
                certificate, is_public=is_public, allowed_viewers=allowed_viewers
            ),
        )

    # -------------------------------------------------------------------------
    # Share tokens
    # -------------------------------------------------------------------------

    async def create_share_token(
        self,
        owner_id: str,
        target: ShareTarget,
        resource_id: str,
        ttl: timedelta | None = None,
        *,
        max_access: int | None = None,
        password: str | None = None,
    ) -> ShareToken:
        """Issue a token, embed it in its resource and index it.

        Raises:
            PreconditionFailedError: If owner_id does not own the resource or
                the resource cannot be shared.
            ValidationError: If ttl or max_access are out of range.
            ConcurrentModificationError: If the token string is already indexed.
        """
        token = self.share_tokens.issue(
            owner_id,
            resource_id,
            ttl,
            target=target,
            max_access=max_access,
            password=password,
        )

        entity_type = _TARGET_TYPES[target]

        def attach(owner: Any) -> Any:
            if target == ShareTarget.CERTIFICATE:
                if owner_id not in (owner.recipient_id, owner.issuer_id):
                    raise PreconditionFailedError(
                        "create_share_token",
                        f"{owner_id} does not own certificate {resource_id}",
                    )
                return self.certificates.attach_share_token(owner, token)
            if owner_id != owner.uploader_id:
                raise PreconditionFailedError(
                    "create_share_token",
                    f"{owner_id} does not own document {resource_id}",
                )
            return self.verification.attach_share_token(owner, token)

        # Refused shares must not claim the index
        attach(await self._get(entity_type, resource_id))

        # A duplicate token string fails here, before anything is embedded
        await self._store.create(
            SHARE_TOKEN_INDEX,
            token.token,
            {"target": target.value, "resource_id": resource_id},
        )
        await self._update(entity_type, resource_id, attach)
        return token

    async def _resolve_token(self, token: str) -> tuple[ShareTarget, str]:
        entry = await self._store.find(SHARE_TOKEN_INDEX, token)
        if entry is None:
            raise TokenInvalidError(token[:8], reason="token is unknown")
        return ShareTarget(entry.payload["target"]), entry.payload["resource_id"]

    async def access_via_share_token(
        self, token: str, password: str | None = None
    ) -> SharedResource:
        """Validate a token and count one use on it and on its resource.

        The token lives inside its certificate or document, so the check,
        the use count and the access count are saved as one CAS write.

        Raises:
            TokenInvalidError: If the token is unknown, revoked, or its
                resource is no longer active/shareable.
            ShareAccessError: Any other share-access failure.
        """
        target, resource_id = await self._resolve_token(token)
        entity_type = _TARGET_TYPES[target]

        def consume(owner: Any) -> tuple[Any, SharedResource]:
            embedded = find_token(owner.share_tokens, token)
            if embedded is None:
                raise TokenInvalidError(token[:8], reason="token is unknown")

            if target == ShareTarget.CERTIFICATE:
                if not self.certificates.is_active(owner):
                    raise TokenInvalidError(
                        embedded.token_prefix, reason="certificate is not active"
                    )
                consumed, _ = self.share_tokens.validate_and_consume(embedded, password)
                updated = self.certificates.record_access(
                    self.certificates.update_share_token(owner, consumed)
                )
            else:
                if not self.verification.can_be_shared(owner):
                    raise TokenInvalidError(
                        embedded.token_prefix, reason="document is not shareable"
                    )
                consumed, _ = self.share_tokens.validate_and_consume(embedded, password)
                updated = self.verification.record_access(
                    self.verification.update_share_token(owner, consumed)
                )
            return updated, SharedResource(target=target, resource=updated, token=consumed)

        return await self._mutate(entity_type, resource_id, consume)

    async def revoke_share_token(self, token: str, revoked_by: str) -> ShareToken:
        """Deactivate a token; it stays embedded for the audit trail."""
        target, resource_id = await self._resolve_token(token)
        entity_type = _TARGET_TYPES[target]
        lifecycle_update = (
            self.certificates.update_share_token
            if target == ShareTarget.CERTIFICATE
            else self.verification.update_share_token
        )

        def revoke(owner: Any) -> tuple[Any, ShareToken]:
            embedded = find_token(owner.share_tokens, token)
            if embedded is None:
                raise TokenInvalidError(token[:8], reason="token is unknown")
            revoked = self.share_tokens.revoke(embedded)
            return lifecycle_update(owner, revoked), revoked

        revoked = await self._mutate(entity_type, resource_id, revoke)
        logger.info(
            "Share token revocation stored",
            extra={
                "token_prefix": revoked.token_prefix,
                "resource_id": resource_id,
                "revoked_by": revoked_by,
            },
        )
        return revoked

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def register_document(self, **fields: Any) -> Document:
        """Create and store an unverified document (see VerificationTrail.register)."""
        document = self.verification.register(**fields)
        await self._insert(document, document.document_id)
        return document

    async def get_document(self, document_id: str) -> Document:
        return await self._get(Document, document_id)

    async def append_verification_step(self, document_id: str, step: VerificationStep) -> Document:
        return await self._update(
            Document,
            document_id,
            lambda document: self.verification.append_step(document, step),
        )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def list_requests(self) -> list[CertificateRequest]:
        stored = await self._store.scan(collection_for(CertificateRequest))
        return [from_payload(CertificateRequest, item.payload) for item in stored]

    async def list_certificates(self) -> list[Certificate]:
        stored = await self._store.scan(collection_for(Certificate))
        return [from_payload(Certificate, item.payload) for item in stored]

    async def sweep(self) -> SweepReport:
        """Flag overdue requests, stale drafts and near-expiry certificates."""
        return self.reporting.sweep(await self.list_requests(), await self.list_certificates())
