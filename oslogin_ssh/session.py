"""Cancellable OS Login SSH sessions.

Example:
    >>> import oslogin_ssh
    >>> pending = oslogin_ssh.connect({"zone": "us-central1-a", "name": "vm-1"})
    >>> handle = await pending          # or pending.end() to abort
    >>> code, out, _ = await handle.run("hostname")
    >>> handle.end()
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from collections.abc import Callable, Generator, Mapping
from typing import Any

from loguru import logger

from oslogin_ssh.broker import CredentialBroker
from oslogin_ssh.config import OsLoginSSH, resolve_config
from oslogin_ssh.coordinator import RaceRetryCoordinator
from oslogin_ssh.core.exceptions import Aborted
from oslogin_ssh.identity import EphemeralIdentity
from oslogin_ssh.infra.lock import RegistrationSerializer
from oslogin_ssh.infra.ssh import ConnectionEstablisher, SessionHandle
from oslogin_ssh.infra.threaded import ThreadPoolRunner
from oslogin_ssh.providers.gcp.compute import InstanceDescriptor, Inventory, InventoryClient
from oslogin_ssh.providers.gcp.oslogin import IdentityProvider, OsLoginClient

_session_ids = itertools.count(1)


class SessionFuture:
    """Awaitable outcome of ``CancellableSession.start()`` with ``end()`` attached."""

    __slots__ = ("_future", "_session")

    def __init__(self, future: asyncio.Future[SessionHandle], session: CancellableSession) -> None:
        self._future = future
        self._session = session

    def __await__(self) -> Generator[Any, None, SessionHandle]:
        return self._future.__await__()

    def end(self) -> None:
        self._session.end()

    def done(self) -> bool:
        return self._future.done()

    def add_done_callback(self, fn: Callable[[asyncio.Future[SessionHandle]], object]) -> None:
        self._future.add_done_callback(fn)

    @property
    def session(self) -> CancellableSession:
        return self._session


class CancellableSession:
    """One end-to-end connection attempt that can be aborted at any point.

    ``end()`` is idempotent. The first call closes any open transport and
    marks the session aborted. If the outcome is still pending, it is
    rejected with Aborted. In-flight provider results are discarded.
    """

    def __init__(
        self,
        identity: EphemeralIdentity,
        broker: CredentialBroker,
        establisher: ConnectionEstablisher,
        config: OsLoginSSH | None = None,
    ) -> None:
        config = config or OsLoginSSH()
        self._ended = False
        self.identity = identity
        self.broker = broker
        self.coordinator = RaceRetryCoordinator(
            identity,
            broker,
            establisher,
            ttl=config.key_ttl,
            backoff=config.race_backoff,
            deadline=config.race_retry_deadline,
            is_active=lambda: not self._ended,
        )
        self._future: asyncio.Future[SessionHandle] | None = None
        self._task: asyncio.Task[None] | None = None
        self._log = logger.bind(component="session", session=next(_session_ids))

    @property
    def ended(self) -> bool:
        return self._ended

    def start(self) -> SessionFuture:
        if self._future is None:
            loop = asyncio.get_running_loop()
            self._future = loop.create_future()
            self._task = loop.create_task(self._run())
        return SessionFuture(self._future, self)

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._log.info("Session ended by caller")
        if self.coordinator.transport is not None:
            self.coordinator.transport.end()
        self._settle(error=Aborted())
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        try:
            handle = await self.coordinator.run()
        except asyncio.CancelledError:
            self._settle(error=Aborted())
            raise
        except Exception as e:
            self._settle(error=Aborted() if self._ended else e)
            return

        if self._ended:
            handle.end()
            self._settle(error=Aborted())
            return
        self._log.info(
            "Session ready after {n} registration(s)", n=self.coordinator.registrations,
        )
        self._settle(result=handle)

    def _settle(
        self, *, result: SessionHandle | None = None, error: BaseException | None = None,
    ) -> None:
        future = self._future
        if future is None or future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)  # type: ignore[arg-type]


def connect(
    instance: InstanceDescriptor | Mapping[str, Any] | None = None,
    *,
    host: str | None = None,
    project: str | None = None,
    key_filename: str | None = None,
    config: OsLoginSSH | None = None,
    oslogin: IdentityProvider | None = None,
    inventory: Inventory | None = None,
    serializer: RegistrationSerializer | None = None,
    establisher: ConnectionEstablisher | None = None,
) -> SessionFuture:
    """Open an SSH session to a GCE instance through OS Login.

    Must be called from a running event loop. Google clients are built from
    ``key_filename`` (or ADC) unless ``oslogin`` / ``inventory`` are given.

    Args:
        instance: InstanceDescriptor or mapping with ``zone`` and ``name``.
        host: Address override; skips the instance lookup.
        project: GCP project for the instance lookup.
        key_filename: Service account key file.
        config: Settings. Defaults to TOML files merged with the arguments;
            explicit ``project`` / ``key_filename`` override it when given.

    Returns:
        SessionFuture resolving to a SessionHandle.
    """
    descriptor = InstanceDescriptor.parse(instance) if instance is not None else None
    if descriptor is not None:
        project = project or descriptor.project
    if config is None:
        config = resolve_config(project=project, key_filename=key_filename)
    else:
        explicit = {"project": project, "key_filename": key_filename}
        config = dataclasses.replace(config, **{k: v for k, v in explicit.items() if v is not None})

    runner: ThreadPoolRunner | None = None
    if oslogin is None or (inventory is None and host is None):
        runner = ThreadPoolRunner(config.thread_pool_size)
    try:
        if oslogin is None:
            oslogin = OsLoginClient.create(key_filename=config.key_filename, runner=runner)
        if inventory is None and host is None:
            inventory = InventoryClient.create(
                project=project or config.project,
                key_filename=config.key_filename,
                runner=runner,
            )
    except Exception:
        if runner is not None:
            runner.shutdown()
        raise

    identity = EphemeralIdentity(
        oslogin.principal,
        instance=descriptor,
        inventory=inventory,
        host=host,
        algorithm=config.key_algorithm,
    )
    session = CancellableSession(
        identity,
        CredentialBroker(oslogin, serializer or RegistrationSerializer(config.lock_token)),
        establisher or ConnectionEstablisher(
            port=config.port, connect_timeout=config.connect_timeout,
        ),
        config,
    )
    pending = session.start()
    if runner is not None:
        pending.add_done_callback(lambda _: runner.shutdown())
    return pending
