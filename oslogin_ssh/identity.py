"""Ephemeral identity material for one session.

Holds the session's single keypair and its fingerprint, and resolves the
principal and target endpoint once, lazily, on first use.
"""

from __future__ import annotations

import hashlib
from collections.abc import Awaitable, Callable
from functools import cached_property

import asyncssh
from loguru import logger

from oslogin_ssh.core.exceptions import ResolutionError
from oslogin_ssh.infra.once import Once
from oslogin_ssh.providers.gcp.compute import InstanceDescriptor, Inventory

log = logger.bind(component="identity")


def fingerprint_of(key: asyncssh.SSHKey) -> str:
    """Hex SHA-256 of the public key's SSH wire encoding.

    Same digest OS Login uses to index ``ssh_public_keys`` in a profile.
    """
    return hashlib.sha256(key.public_data).hexdigest()


class EphemeralIdentity:
    """Keypair, fingerprint, principal and endpoint for one session.

    Args:
        principal: Coroutine function discovering the acting principal.
        instance: Instance to resolve the endpoint from.
        inventory: Inventory used to resolve ``instance``.
        host: Endpoint override. When given, no inventory lookup happens.
        algorithm: asyncssh key algorithm for the ephemeral keypair.
    """

    def __init__(
        self,
        principal: Callable[[], Awaitable[str]],
        *,
        instance: InstanceDescriptor | None = None,
        inventory: Inventory | None = None,
        host: str | None = None,
        algorithm: str = "ecdsa-sha2-nistp256",
    ) -> None:
        if not host and (instance is None or inventory is None):
            raise ResolutionError("Either host or instance with an inventory is required")
        self._discover_principal = principal
        self._instance = instance
        self._inventory = inventory
        self._algorithm = algorithm
        self._principal: Once[str] = Once()
        self._endpoint: Once[str] = Once.of(host) if host else Once()

    @cached_property
    def keypair(self) -> asyncssh.SSHKey:
        key = asyncssh.generate_private_key(self._algorithm)
        log.debug("Generated ephemeral {alg} key", alg=self._algorithm)
        return key

    @cached_property
    def public_key(self) -> str:
        """OpenSSH public key line, as uploaded to OS Login."""
        return self.keypair.export_public_key("openssh").decode().strip()

    @cached_property
    def fingerprint(self) -> str:
        return fingerprint_of(self.keypair)

    async def principal(self) -> str:
        return await self._principal.get(self._resolve_principal)

    async def endpoint(self) -> str:
        return await self._endpoint.get(self._resolve_endpoint)

    async def _resolve_principal(self) -> str:
        try:
            principal = await self._discover_principal()
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"Could not resolve principal: {e}") from e
        if not principal:
            raise ResolutionError("Identity provider returned an empty principal")
        return principal

    async def _resolve_endpoint(self) -> str:
        instance, inventory = self._instance, self._inventory
        if instance is None or inventory is None:
            raise ResolutionError("Either host or instance with an inventory is required")
        zone, name = instance.zone, instance.name
        try:
            ip = await inventory.nat_ip(zone, name)
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"Could not look up instance {zone}/{name}: {e}") from e
        if not ip:
            raise ResolutionError(f"Instance {zone}/{name} has no external IP")
        log.debug("Resolved {zone}/{name} to {ip}", zone=zone, name=name, ip=ip)
        return ip
