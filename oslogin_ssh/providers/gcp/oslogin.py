"""OS Login client: key import and login-profile lookup.

Wraps the sync ``OsLoginServiceClient`` and dispatches every call to a
thread pool. Provider failures surface as ProviderError; only principal
discovery raises ResolutionError.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from oslogin_ssh.core.exceptions import ProviderError, ResolutionError
from oslogin_ssh.infra.threaded import ThreadPoolRunner

from .credentials import load_credentials, principal_email

log = logger.bind(provider="oslogin")


@dataclass(frozen=True, slots=True)
class LoginProfile:
    """Result of registering a key with OS Login."""

    name: str
    usernames: tuple[str, ...]
    fingerprints: frozenset[str] = frozenset()

    @property
    def username(self) -> str:
        """First POSIX username, the one sessions authenticate as."""
        if not self.usernames:
            raise ProviderError(f"Login profile {self.name!r} has no POSIX accounts")
        return self.usernames[0]


@runtime_checkable
class IdentityProvider(Protocol):
    """What the broker needs from an identity provider."""

    async def principal(self) -> str: ...

    async def import_public_key(
        self, principal: str, public_key: str, ttl: float,
    ) -> LoginProfile: ...

    async def get_profile(self, principal: str) -> Mapping[str, Any]: ...


def user_path(principal: str) -> str:
    return f"users/{principal}"


def expiration_usec(ttl: float, *, now: float | None = None) -> int:
    """Absolute expiry in microseconds since epoch, ``ttl`` seconds from now."""
    start = time.time() if now is None else now
    return int((start + ttl) * 1_000_000)


def profile_from_response(profile: Any) -> LoginProfile:
    """Build a LoginProfile from an OS Login ``LoginProfile`` message."""
    accounts: Iterable[Any] = getattr(profile, "posix_accounts", None) or ()
    keys: Mapping[str, Any] = getattr(profile, "ssh_public_keys", None) or {}
    return LoginProfile(
        name=str(getattr(profile, "name", "")),
        usernames=tuple(a.username for a in accounts if getattr(a, "username", "")),
        fingerprints=frozenset(keys),
    )


class OsLoginClient:
    """OS Login API bound to one set of credentials."""

    def __init__(self, client: Any, credentials: Any, runner: ThreadPoolRunner) -> None:
        self._client = client
        self._credentials = credentials
        self._runner = runner

    @classmethod
    def create(
        cls,
        *,
        key_filename: str | None = None,
        runner: ThreadPoolRunner | None = None,
    ) -> OsLoginClient:
        from google.cloud import oslogin_v1  # type: ignore[reportMissingImports]

        credentials, _ = load_credentials(key_filename)
        return cls(
            client=oslogin_v1.OsLoginServiceClient(credentials=credentials),
            credentials=credentials,
            runner=runner or ThreadPoolRunner(4, name="oslogin-io"),
        )

    async def principal(self) -> str:
        try:
            return await self._runner.run(principal_email, self._credentials)
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"Could not discover OS Login principal: {e}") from e

    async def import_public_key(
        self, principal: str, public_key: str, ttl: float,
    ) -> LoginProfile:
        expiry = expiration_usec(ttl)
        log.debug("Importing key for {principal} (ttl={ttl}s)", principal=principal, ttl=ttl)
        try:
            response = await self._runner.run(
                self._client.import_ssh_public_key,
                parent=user_path(principal),
                ssh_public_key={"key": public_key, "expiration_time_usec": expiry},
            )
        except Exception as e:
            raise ProviderError(f"Importing SSH key for {principal} failed: {e}") from e
        return profile_from_response(response.login_profile)

    async def get_profile(self, principal: str) -> Mapping[str, Any]:
        try:
            profile = await self._runner.run(
                self._client.get_login_profile, name=user_path(principal),
            )
        except Exception as e:
            raise ProviderError(f"Fetching login profile for {principal} failed: {e}") from e
        return dict(profile.ssh_public_keys)
