from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Callable, Mapping
from typing import Any, TypeAlias

import asyncssh
import pytest

from oslogin_ssh import (
    AuthError,
    CredentialBroker,
    EphemeralIdentity,
    LoginProfile,
    ProviderError,
    RegistrationSerializer,
    SessionHandle,
)

PRINCIPAL = "runner@my-project.iam.gserviceaccount.com"
USERNAME = "sa_1234567890"
HOST = "34.1.2.3"


def fingerprint_of_line(public_key: str) -> str:
    return hashlib.sha256(asyncssh.import_public_key(public_key).public_data).hexdigest()


class FakeOsLogin:
    """In-memory OS Login: a principal's key map plus call accounting."""

    def __init__(
        self,
        keys: Mapping[str, str] | None = None,
        *,
        principal: str = PRINCIPAL,
        usernames: tuple[str, ...] = (USERNAME,),
        import_delay: float = 0.0,
    ) -> None:
        self.keys: dict[str, str] = dict(keys or {})
        self._principal = principal
        self.usernames = usernames
        self.import_delay = import_delay
        self.imports = 0
        self.profile_reads = 0
        self.principal_calls = 0
        self.active_imports = 0
        self.max_concurrent_imports = 0
        self.import_error: Exception | None = None
        self.profile_error: Exception | None = None

    async def principal(self) -> str:
        self.principal_calls += 1
        await asyncio.sleep(0)
        return self._principal

    async def import_public_key(self, principal: str, public_key: str, ttl: float) -> LoginProfile:
        self.active_imports += 1
        self.max_concurrent_imports = max(self.max_concurrent_imports, self.active_imports)
        try:
            await asyncio.sleep(self.import_delay)
            if self.import_error is not None:
                raise self.import_error
            self.imports += 1
            self.keys[fingerprint_of_line(public_key)] = public_key
            return LoginProfile(
                name=f"users/{principal}",
                usernames=self.usernames,
                fingerprints=frozenset(self.keys),
            )
        finally:
            self.active_imports -= 1

    async def get_profile(self, principal: str) -> Mapping[str, Any]:
        self.profile_reads += 1
        await asyncio.sleep(0)
        if self.profile_error is not None:
            raise self.profile_error
        return dict(self.keys)


class FakeInventory:
    def __init__(self, ip: str | None = HOST) -> None:
        self.ip = ip
        self.lookups = 0

    async def nat_ip(self, zone: str, name: str) -> str | None:
        self.lookups += 1
        await asyncio.sleep(0)
        return self.ip


class FakeConnection:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


Outcome: TypeAlias = Exception | Callable[[], object] | None


class FakeEstablisher:
    """Plays back scripted connect outcomes.

    ``None`` succeeds, an exception is raised, a callable runs before
    succeeding (or raising what it returns, if it returns an exception).
    """

    def __init__(self, *outcomes: Outcome, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes)
        self.delay = delay
        self.attempts: list[tuple[str, str, asyncssh.SSHKey]] = []
        self.handles: list[SessionHandle] = []

    async def connect(
        self, endpoint: str, username: str, private_key: asyncssh.SSHKey, *, fingerprint: str = "",
    ) -> SessionHandle:
        self.attempts.append((endpoint, username, private_key))
        await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if callable(outcome) and not isinstance(outcome, Exception):
            outcome = outcome()
        if isinstance(outcome, Exception):
            raise outcome
        handle = SessionHandle(
            host=endpoint, username=username, fingerprint=fingerprint,
            _conn=FakeConnection(),  # type: ignore[arg-type]
        )
        self.handles.append(handle)
        return handle


def auth_exhausted() -> AuthError:
    return AuthError("All configured authentication methods failed")


@pytest.fixture
def oslogin() -> FakeOsLogin:
    return FakeOsLogin()


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def serializer() -> RegistrationSerializer:
    return RegistrationSerializer.isolated()


@pytest.fixture
def identity(oslogin: FakeOsLogin) -> EphemeralIdentity:
    return EphemeralIdentity(oslogin.principal, host=HOST)


@pytest.fixture
def broker(oslogin: FakeOsLogin, serializer: RegistrationSerializer) -> CredentialBroker:
    return CredentialBroker(oslogin, serializer)


@pytest.fixture
def provider_error() -> ProviderError:
    return ProviderError("403 caller lacks roles/compute.osAdminLogin")
