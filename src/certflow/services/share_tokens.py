"""Share token issuance and access checks.

A share token grants a non-owner read access to one certificate or
document. Tokens are limited by time (expires_at) and by use count
(max_access). They are never deleted; revocation only clears is_active
so that the audit trail keeps every token that was ever handed out.

Checks run in a fixed order so that callers get the most specific
error first:
    inactive -> expired -> exhausted -> password required -> password mismatch

The guard is pure. Atomicity of check-and-increment against concurrent
callers comes from saving the owning certificate/document under a
compare-and-swap (see certflow.services.workflow).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from certflow.core.clock import Clock, utc_now
from certflow.core.config import ShareTokenSettings
from certflow.core.errors import (
    PasswordMismatchError,
    PasswordRequiredError,
    TokenExhaustedError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)
from certflow.models.entities import ShareToken
from certflow.models.enums import ShareTarget

logger = logging.getLogger(__name__)


def hash_share_password(password: str) -> str:
    """Hash a share password for storage.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _password_matches(supplied: str, stored_hash: str) -> bool:
    """Compare a supplied password against a stored hash in constant time."""
    return hmac.compare_digest(
        hash_share_password(supplied).encode("utf-8"),
        stored_hash.encode("utf-8"),
    )


def find_token(tokens: Sequence[ShareToken], token: str) -> ShareToken | None:
    for candidate in tokens:
        if hmac.compare_digest(candidate.token.encode("utf-8"), token.encode("utf-8")):
            return candidate
    return None


def replace_token(tokens: Sequence[ShareToken], updated: ShareToken) -> tuple[ShareToken, ...]:
    """Swap a token (matched by its string) inside an owner's token list."""
    return tuple(updated if existing.token == updated.token else existing for existing in tokens)


class ShareTokenGuard:
    """Issues, checks, consumes and revokes share tokens.

    Example:
        guard = ShareTokenGuard(settings.share)
        token = guard.issue("owner-1", "cert-1", ttl=timedelta(days=7))
        consumed, resource_id = guard.validate_and_consume(token)
    """

    def __init__(
        self,
        settings: ShareTokenSettings | None = None,
        clock: Clock = utc_now,
        token_factory: Callable[[], str] | None = None,
    ) -> None:
        self._settings = settings or ShareTokenSettings()
        self._clock = clock
        self._token_factory = token_factory or self._generate_token

    def _generate_token(self) -> str:
        """Generate a cryptographically secure URL-safe token."""
        return secrets.token_urlsafe(self._settings.token_bytes)

    @property
    def default_ttl(self) -> timedelta:
        return timedelta(days=self._settings.default_ttl_days)

    def issue(
        self,
        owner_id: str,
        resource_id: str,
        ttl: timedelta | None = None,
        *,
        target: ShareTarget = ShareTarget.CERTIFICATE,
        max_access: int | None = None,
        password: str | None = None,
    ) -> ShareToken:
        """Create a new share token.

        Args:
            owner_id: Identifier of the sharing owner.
            resource_id: Certificate or document the token opens.
            ttl: Lifetime of the token; defaults to the configured TTL.
            target: Kind of resource behind resource_id.
            max_access: Allowed successful uses; defaults to the configured limit.
            password: Optional password; only its hash is stored.

        Returns:
            The new, active token.

        Raises:
            ValidationError: If ttl is not positive or exceeds the maximum,
                max_access is below 1, or password is empty.
        """
        ttl = self.default_ttl if ttl is None else ttl
        max_access = self._settings.default_max_access if max_access is None else max_access

        violations = []
        if ttl <= timedelta(0):
            violations.append(("ttl", "Share token lifetime must be positive"))
        elif ttl > timedelta(days=self._settings.max_ttl_days):
            violations.append(
                ("ttl", f"Share token lifetime cannot exceed {self._settings.max_ttl_days} days")
            )
        if max_access < 1:
            violations.append(("max_access", "Share token must allow at least one access"))
        if password is not None and not password:
            violations.append(("password", "Share password cannot be empty"))
        if not resource_id:
            violations.append(("resource_id", "Resource ID is required"))
        if violations:
            raise ValidationError.from_pairs(violations)

        now = self._clock()
        token = ShareToken(
            token=self._token_factory(),
            target=target,
            resource_id=resource_id,
            created_by=owner_id,
            created_at=now,
            expires_at=now + ttl,
            password_hash=hash_share_password(password) if password else None,
            max_access=max_access,
        )
        logger.info(
            "Share token issued",
            extra={
                "token_prefix": token.token_prefix,
                "target": target.value,
                "resource_id": resource_id,
                "owner_id": owner_id,
                "expires_at": token.expires_at.isoformat(),
                "max_access": max_access,
            },
        )
        return token

    def check(self, token: ShareToken, supplied_password: str | None = None) -> None:
        """Run every access check without consuming a use.

        Raises:
            TokenInvalidError: If the token was revoked.
            TokenExpiredError: If now >= expires_at.
            TokenExhaustedError: If no uses remain.
            PasswordRequiredError: If a password is set but none was supplied.
            PasswordMismatchError: If the supplied password is wrong.
        """
        now = self._clock()
        prefix = token.token_prefix

        if not token.is_active:
            raise TokenInvalidError(prefix, reason="token was revoked")
        if token.is_expired(now):
            raise TokenExpiredError(prefix, token.expires_at)
        if token.is_exhausted:
            raise TokenExhaustedError(prefix, token.max_access)
        if token.password_hash is not None:
            if not supplied_password:
                raise PasswordRequiredError(prefix)
            if not _password_matches(supplied_password, token.password_hash):
                logger.warning(
                    "Share token password mismatch",
                    extra={"token_prefix": prefix, "resource_id": token.resource_id},
                )
                raise PasswordMismatchError(prefix)

    def validate_and_consume(
        self,
        token: ShareToken,
        supplied_password: str | None = None,
    ) -> tuple[ShareToken, str]:
        """Check a token and count one successful use.

        Returns:
            Tuple of (token with current_access incremented, bound resource id).

        Raises:
            ShareAccessError: Any of the errors documented on check().
        """
        self.check(token, supplied_password)
        consumed = replace(token, current_access=token.current_access + 1)
        logger.info(
            "Share token consumed",
            extra={
                "token_prefix": token.token_prefix,
                "resource_id": token.resource_id,
                "current_access": consumed.current_access,
                "max_access": consumed.max_access,
            },
        )
        return consumed, token.resource_id

    def revoke(self, token: ShareToken) -> ShareToken:
        """Deactivate a token; revoking an inactive token changes nothing."""
        if not token.is_active:
            return token
        logger.info(
            "Share token revoked",
            extra={"token_prefix": token.token_prefix, "resource_id": token.resource_id},
        )
        return replace(token, is_active=False, revoked_at=self._clock())

    def remaining_uses(self, token: ShareToken) -> int:
        return max(0, token.max_access - token.current_access)

    def is_valid(self, token: ShareToken, now: datetime | None = None) -> bool:
        return token.is_valid(now or self._clock())
