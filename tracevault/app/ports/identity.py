"""Identity port interface for verifying presented tokens."""

from typing import Any, Protocol

from pydantic import BaseModel, Field


class IdentityClaims(BaseModel):
    """Verified identity extracted from a token."""

    subject_id: str = Field(..., description="Stable subject identifier")
    email: str | None = Field(default=None, description="Email address, when known")
    claims: dict[str, Any] = Field(default_factory=dict, description="Custom claims (e.g. admin)")
    auth_time: int | None = Field(
        default=None, description="Epoch seconds of the authentication event"
    )

    def has_claim(self, name: str) -> bool:
        """True when the custom claim ``name`` is exactly ``True``."""
        return self.claims.get(name) is True


class IdentityPort(Protocol):
    """Port interface for the identity provider.

    Side effects: None (pure verification).
    """

    def verify_token(self, token: str) -> IdentityClaims:
        """Verify ``token`` and return its claims.

        Raises:
            AuthenticationError: If the token is invalid or expired
        """
        ...
