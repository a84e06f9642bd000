"""AsyncSSH transport for OS Login sessions.

The establisher opens the connection and classifies failures at the
boundary: a rejected key surfaces as a race-candidate AuthError, anything
network-level as TransportError. Callers never match on error messages.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field

import asyncssh
from loguru import logger

from oslogin_ssh.core.exceptions import AuthError, TransportError

log = logger.bind(component="transport")


@dataclass
class SessionHandle:
    """A live SSH session opened with an ephemeral OS Login key.

    Example:
        >>> handle = await establisher.connect(host, user, key)
        >>> code, out, err = await handle.run("hostname")
        >>> await handle.close()
    """

    host: str
    username: str
    fingerprint: str
    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    @property
    def connection(self) -> asyncssh.SSHClientConnection:
        """Underlying asyncssh connection."""
        if self._conn is None:
            raise TransportError(f"Session to {self.host} is closed")
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def end(self) -> None:
        """Close the transport without waiting for the peer."""
        if self._conn is not None:
            log.debug("Closing session to {host}", host=self.host)
            self._conn.close()
            self._conn = None

    async def close(self) -> None:
        """Close the transport and wait for it to shut down."""
        conn = self._conn
        self.end()
        if conn is not None:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(conn.wait_closed(), timeout=5.0)

    async def __aenter__(self) -> SessionHandle:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def run(
        self,
        *command: str,
        timeout: float | None = None,
        check: bool = False,
    ) -> tuple[int, str, str]:
        """Execute command and return (exit_code, stdout, stderr).

        Raises:
            TransportError: If the session is closed, or check=True and the
                command exits non-zero.
        """
        conn = self.connection
        cmd = " ".join(command)

        try:
            result = await conn.run(cmd, timeout=timeout, check=False)
        except (asyncssh.Error, OSError) as e:
            raise TransportError(f"Command failed on {self.host}: {e}") from e

        code = result.exit_status or 0
        stdout = result.stdout or ""
        stderr = result.stderr or ""

        if check and code != 0:
            raise TransportError(f"Command failed ({code}): {stderr}")

        return code, str(stdout), str(stderr)


@dataclass(frozen=True, slots=True)
class ConnectionEstablisher:
    """Opens SSH connections with an in-memory private key.

    Host keys are not verified: OS Login targets are addressed by a freshly
    resolved ephemeral IP.
    """

    port: int = 22
    connect_timeout: float = 30.0

    async def connect(
        self,
        endpoint: str,
        username: str,
        private_key: asyncssh.SSHKey,
        *,
        fingerprint: str = "",
    ) -> SessionHandle:
        log.debug(
            "Connecting to {host}:{port} as {user}",
            host=endpoint, port=self.port, user=username,
        )
        try:
            conn = await asyncssh.connect(
                endpoint,
                port=self.port,
                username=username,
                client_keys=[private_key],
                known_hosts=None,
                agent_path=None,
                connect_timeout=self.connect_timeout,
            )
        except asyncssh.PermissionDenied as e:
            raise AuthError(
                f"All configured authentication methods failed for {username}@{endpoint}",
                cause=e,
            ) from e
        except (asyncssh.Error, OSError, TimeoutError) as e:
            raise TransportError(f"Could not connect to {endpoint}:{self.port}: {e}") from e

        log.info("Connected to {host} as {user}", host=endpoint, user=username)
        return SessionHandle(
            host=endpoint, username=username, fingerprint=fingerprint, _conn=conn,
        )
