"""Race-aware register/connect loop.

OS Login propagates imported keys eventually. When another process
mutates the same principal's key set at the same time, a freshly imported
key can be missing from the view the SSH server sees, and authentication
is exhausted. The coordinator tells that race apart from a genuine
rejection by probing the principal's other fingerprints before and after
the failure:

    INIT -> PROBING -> REGISTERING -> CONNECTING -> DONE
                          ^               |
                          |               v  auth exhausted, key set changed
                          +---------- RETRYING
                                          |  auth exhausted, key set unchanged
                                          v  or any other error
                                        FAILED

The loop has no attempt limit. It ends when the key set stops changing,
on any non-race error, on cancellation, or at the optional deadline.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum

from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_delay,
    stop_never,
    wait_none,
)

from oslogin_ssh.broker import CredentialBroker
from oslogin_ssh.core.exceptions import Aborted, AuthError, ProviderError
from oslogin_ssh.identity import EphemeralIdentity
from oslogin_ssh.infra.ssh import ConnectionEstablisher, SessionHandle


class State(StrEnum):
    INIT = "init"
    PROBING = "probing"
    REGISTERING = "registering"
    CONNECTING = "connecting"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


class _KeySetChanged(Exception):
    """Auth failed while another writer changed the key set - retry."""

    def __init__(self, error: AuthError) -> None:
        self.error = error
        super().__init__(str(error))


class RaceRetryCoordinator:
    """Drives register -> connect, retrying only on evidence of a race.

    Args:
        identity: Session identity material.
        broker: Registers keys and probes fingerprints.
        establisher: Opens the SSH transport.
        ttl: Seconds each registered key stays valid.
        backoff: Seconds to wait before re-probing after an auth failure.
        deadline: Optional bound in seconds on the whole retry loop.
        is_active: Returns False once the owning session has ended.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        identity: EphemeralIdentity,
        broker: CredentialBroker,
        establisher: ConnectionEstablisher,
        *,
        ttl: float = 600.0,
        backoff: float = 1.0,
        deadline: float | None = None,
        is_active: Callable[[], bool] = lambda: True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._identity = identity
        self._broker = broker
        self._establisher = establisher
        self._ttl = ttl
        self._backoff = backoff
        self._deadline = deadline
        self._is_active = is_active
        self._sleep = sleep
        self._baseline: frozenset[str] = frozenset()
        self.state = State.INIT
        self.retries = 0
        self.transport: SessionHandle | None = None
        self._log = logger.bind(component="coordinator")

    @property
    def registrations(self) -> int:
        return self._broker.registrations

    async def run(self) -> SessionHandle:
        try:
            self._transition(State.PROBING)
            principal = await self._identity.principal()
            self._ensure_active()
            self._baseline = await self._broker.other_fingerprints(
                principal, self._identity.fingerprint,
            )

            try:
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception_type(_KeySetChanged),
                    stop=stop_after_delay(self._deadline) if self._deadline else stop_never,
                    wait=wait_none(),
                    reraise=True,
                ):
                    with attempt:
                        handle = await self._attempt(principal)
            except _KeySetChanged as e:
                self._log.warning("Race retries exhausted after {s}s", s=self._deadline)
                raise e.error from e
        except BaseException:
            self._transition(State.FAILED)
            self._close_transport()
            raise

        self._transition(State.DONE)
        return handle

    async def _attempt(self, principal: str) -> SessionHandle:
        self._ensure_active()
        self._transition(State.REGISTERING)
        usernames = await self._broker.register(
            principal, self._identity.public_key, self._ttl,
        )
        if not usernames:
            raise ProviderError(f"Login profile for {principal} has no POSIX accounts")

        endpoint = await self._identity.endpoint()
        self._ensure_active()
        self._transition(State.CONNECTING)
        try:
            handle = await self._establisher.connect(
                endpoint,
                usernames[0],
                self._identity.keypair,
                fingerprint=self._identity.fingerprint,
            )
        except AuthError as e:
            if not e.is_race_candidate:
                raise
            raise await self._classify_race(principal, e) from e

        self.transport = handle
        self._ensure_active()
        return handle

    async def _classify_race(self, principal: str, error: AuthError) -> Exception:
        """_KeySetChanged if another writer touched the key set, else the GENUINE error."""
        self._log.debug("Auth exhausted, re-probing in {s}s", s=self._backoff)
        await self._sleep(self._backoff)
        self._ensure_active()
        current = await self._broker.other_fingerprints(principal, self._identity.fingerprint)
        if current == self._baseline:
            return error.as_genuine()

        self._log.info(
            "Key set changed ({before} -> {after} other keys), retrying",
            before=len(self._baseline), after=len(current),
        )
        self._baseline = current
        self.retries += 1
        self._transition(State.RETRYING)
        return _KeySetChanged(error)

    def _ensure_active(self) -> None:
        if not self._is_active():
            raise Aborted()

    def _close_transport(self) -> None:
        if self.transport is not None:
            self.transport.end()
            self.transport = None

    def _transition(self, state: State) -> None:
        self._log.trace("{old} -> {new}", old=self.state, new=state)
        self.state = state
