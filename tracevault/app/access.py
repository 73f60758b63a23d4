"""Access policy gating reads and writes of audit data."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from tracevault.app.ports import IdentityClaims, IdentityPort
from tracevault.config import Settings
from tracevault.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

ADMIN_CLAIM = "admin"


@dataclass(slots=True)
class AccessPolicy:
    """Admit verified identities holding the admin claim or an allow-listed email."""

    identity: IdentityPort
    admin_emails: frozenset[str] = field(default_factory=frozenset)
    wildcard_allowed: bool = False

    @classmethod
    def from_settings(cls, identity: IdentityPort, settings: Settings) -> AccessPolicy:
        emails = frozenset(email for email in settings.get_admin_emails() if email != "*")
        return cls(
            identity=identity,
            admin_emails=emails,
            wildcard_allowed=settings.wildcard_admin_allowed(),
        )

    def is_admin(self, claims: IdentityClaims) -> bool:
        if claims.has_claim(ADMIN_CLAIM):
            return True
        if self.wildcard_allowed:
            return True
        email = (claims.email or "").strip().lower()
        return bool(email) and email in self.admin_emails

    def authenticate(self, token: str | None) -> IdentityClaims:
        """Verify ``token`` without checking privileges.

        Raises:
            AuthenticationError: If the token is missing or invalid
        """
        if not token:
            raise AuthenticationError("Missing identity token")
        return self.identity.verify_token(token)

    def authorize(self, token: str | None) -> IdentityClaims:
        """Verify ``token`` and require audit-admin privileges.

        Raises:
            AuthenticationError: If the token is missing or invalid
            AuthorizationError: If the identity is not an audit admin
        """
        claims = self.authenticate(token)
        if not self.is_admin(claims):
            logger.info("Audit access denied for subject %s", claims.subject_id)
            raise AuthorizationError(f"Subject {claims.subject_id} may not access audit data")
        return claims
