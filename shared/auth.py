"""
Identity verification for the HTTP API.

The authentication provider is an external collaborator: it issues tokens,
and the notifier only needs the user id and role behind one. Any object with
a verify(token) method can be plugged into the API; StaticTokenVerifier reads
a fixed token map from configuration.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

ROLES = ("service", "client", "admin")


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> Optional[Identity]:
        """Return the identity behind a token, or None if it is not valid."""
        ...


class StaticTokenVerifier:
    """
    Verifier backed by a token -> "role:user_id" map.

    Example:
        StaticTokenVerifier({"tok-7": "service:7", "ops": "admin:1"})
    """

    def __init__(self, tokens: dict[str, str]):
        self._identities: dict[str, Identity] = {}
        for token, value in tokens.items():
            self._identities[token] = self.parse(value)

    @staticmethod
    def parse(value: str) -> Identity:
        role, sep, user_id = value.partition(":")
        if not sep or role not in ROLES:
            raise ValueError(f"Invalid identity '{value}', expected '<role>:<user_id>'")
        return Identity(user_id=int(user_id), role=role)

    def verify(self, token: str) -> Optional[Identity]:
        return self._identities.get(token)
