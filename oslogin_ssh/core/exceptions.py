"""Exception hierarchy for oslogin-ssh.

All library exceptions inherit from OsLoginSSHError, so callers can catch
every failure of a connection attempt with a single except clause.
"""

from __future__ import annotations

from enum import StrEnum


class OsLoginSSHError(Exception):
    """Base exception for all oslogin-ssh errors."""


class ConfigurationError(OsLoginSSHError):
    """Raised for invalid configuration or missing required settings."""


class ResolutionError(OsLoginSSHError):
    """Raised when the principal or the target endpoint cannot be resolved."""


class ProviderError(OsLoginSSHError):
    """Raised when a call to the identity provider fails."""


class TransportError(OsLoginSSHError):
    """Raised for network-level SSH failures. Never treated as a race."""


class AuthFailure(StrEnum):
    """Classification of an exhausted-authentication failure."""

    RACE_CANDIDATE = "race-candidate"
    GENUINE = "genuine"


class AuthError(OsLoginSSHError):
    """Raised when the server rejected every authentication method.

    The transport always raises it as RACE_CANDIDATE. The retry coordinator
    re-tags it GENUINE once the fingerprint probe shows no concurrent writer.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: AuthFailure = AuthFailure.RACE_CANDIDATE,
        cause: BaseException | None = None,
    ) -> None:
        self.kind = kind
        self.cause = cause
        super().__init__(message)

    @property
    def is_race_candidate(self) -> bool:
        return self.kind is AuthFailure.RACE_CANDIDATE

    def as_genuine(self) -> AuthError:
        return AuthError(str(self), kind=AuthFailure.GENUINE, cause=self.cause)


class Aborted(OsLoginSSHError):
    """Raised when a session is ended before it completes."""

    def __init__(self) -> None:
        super().__init__("Aborted")
