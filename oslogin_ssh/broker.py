"""Credential broker: key registration and fingerprint probes."""

from __future__ import annotations

from loguru import logger

from oslogin_ssh.core.exceptions import OsLoginSSHError, ProviderError
from oslogin_ssh.infra.lock import REGISTRATION_LOCK, RegistrationSerializer
from oslogin_ssh.providers.gcp.oslogin import IdentityProvider, LoginProfile


class CredentialBroker:
    """Registers ephemeral keys with the identity provider.

    Registrations go through the serializer, so at most one is in flight per
    process. Fingerprint probes are read-only and run unserialized.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        serializer: RegistrationSerializer = REGISTRATION_LOCK,
    ) -> None:
        self._provider = provider
        self._serializer = serializer
        self._profile: LoginProfile | None = None
        self.registrations = 0
        self._log = logger.bind(component="broker")

    @property
    def profile(self) -> LoginProfile | None:
        """Profile returned by the most recent registration."""
        return self._profile

    async def register(self, principal: str, public_key: str, ttl: float) -> tuple[str, ...]:
        """Upload ``public_key`` for ``principal`` and return the usable usernames."""
        profile = await self._serializer.with_lock(
            self._import, principal, public_key, ttl,
        )
        self._profile = profile
        self.registrations += 1
        self._log.info(
            "Registered key for {principal} ({n} usernames)",
            principal=principal, n=len(profile.usernames),
        )
        return profile.usernames

    async def other_fingerprints(self, principal: str, own_fingerprint: str) -> frozenset[str]:
        """Fingerprints registered for ``principal``, excluding ours."""
        try:
            keys = await self._provider.get_profile(principal)
        except OsLoginSSHError:
            raise
        except Exception as e:
            raise ProviderError(f"Fetching login profile for {principal} failed: {e}") from e
        others = frozenset(keys) - {own_fingerprint}
        self._log.debug("{n} other fingerprints for {principal}", n=len(others), principal=principal)
        return others

    async def _import(self, principal: str, public_key: str, ttl: float) -> LoginProfile:
        try:
            return await self._provider.import_public_key(principal, public_key, ttl)
        except OsLoginSSHError:
            raise
        except Exception as e:
            raise ProviderError(f"Importing SSH key for {principal} failed: {e}") from e
