"""Credential value handed to the engine by the surrounding app.

The engine never reads tokens from ambient state. Whoever owns login
builds a Credential and passes it to ChatEngine / ChatApiClient.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Credential:
    """Bearer token plus the provider's authentication signal.

    Attributes:
        token: Opaque bearer token, or None when logged out.
        is_authenticated: The provider's authenticated/unauthenticated flag.
        role: Account role reported by the provider ("patient", "doctor").
    """
    token: str | None = None
    is_authenticated: bool = False
    role: str | None = None

    @property
    def usable(self) -> bool:
        """True only when both the flag and a non-empty token are present."""
        return self.is_authenticated and bool(self.token)

    def auth_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return (f"Credential(token={'***' if self.token else None}, "
                f"is_authenticated={self.is_authenticated}, role={self.role!r})")


ANONYMOUS = Credential()
