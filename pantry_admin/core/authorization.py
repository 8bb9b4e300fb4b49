"""
Administrator authorization.

A fixed allow-list of administrator contact addresses. Every administrative
entry point checks the caller here before touching the record store; nothing
downstream re-checks.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from .errors import Unauthorized


@dataclass(frozen=True)
class IdentityClaims:
    """Claims about the caller, as asserted by the identity provider."""
    user_id: Optional[str] = None
    email: Optional[str] = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthorizationGate:
    """Allow-list check over identity claims. Pure and synchronous."""

    def __init__(self, admin_emails: Iterable[str]):
        self.admin_emails: FrozenSet[str] = frozenset(
            normalize_email(email) for email in admin_emails if email and email.strip()
        )

    def is_authorized(self, claims: Optional[IdentityClaims]) -> bool:
        """Return True if the caller's email is on the allow-list.

        Args:
            claims: Caller identity claims (may be None for anonymous callers)

        Returns:
            True only for a non-empty email present in the allow-list
        """
        if claims is None or not claims.email:
            return False
        return normalize_email(claims.email) in self.admin_emails

    def require(self, claims: Optional[IdentityClaims]) -> None:
        """Raise Unauthorized unless ``is_authorized(claims)``."""
        if not self.is_authorized(claims):
            raise Unauthorized(
                details={"email": claims.email if claims is not None else None}
            )
