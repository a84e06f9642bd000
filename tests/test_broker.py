from __future__ import annotations

import asyncio

import asyncssh
import pytest

from conftest import PRINCIPAL, USERNAME, FakeOsLogin
from oslogin_ssh import CredentialBroker, ProviderError, RegistrationSerializer, fingerprint_of


def _key_line() -> tuple[str, str]:
    key = asyncssh.generate_private_key("ecdsa-sha2-nistp256")
    return key.export_public_key().decode().strip(), fingerprint_of(key)


class TestRegister:
    async def test_returns_usernames(self, oslogin: FakeOsLogin, broker: CredentialBroker):
        public_key, fingerprint = _key_line()
        assert await broker.register(PRINCIPAL, public_key, 600) == (USERNAME,)
        assert fingerprint in oslogin.keys
        assert broker.registrations == 1

    async def test_profile_replaced_not_merged(self, oslogin: FakeOsLogin, broker: CredentialBroker):
        public_key, _ = _key_line()
        await broker.register(PRINCIPAL, public_key, 600)
        oslogin.usernames = ("other_user",)
        await broker.register(PRINCIPAL, public_key, 600)
        assert broker.profile is not None
        assert broker.profile.usernames == ("other_user",)
        assert broker.registrations == 2

    async def test_provider_error_propagates(
        self, oslogin: FakeOsLogin, broker: CredentialBroker, provider_error: ProviderError,
    ):
        oslogin.import_error = provider_error
        with pytest.raises(ProviderError, match="osAdminLogin"):
            await broker.register(PRINCIPAL, _key_line()[0], 600)
        assert broker.registrations == 0

    async def test_foreign_error_wrapped(self, oslogin: FakeOsLogin, broker: CredentialBroker):
        oslogin.import_error = ConnectionResetError("reset by peer")
        with pytest.raises(ProviderError, match="reset by peer"):
            await broker.register(PRINCIPAL, _key_line()[0], 600)

    async def test_lock_released_after_failure(
        self, oslogin: FakeOsLogin, broker: CredentialBroker, serializer: RegistrationSerializer,
    ):
        oslogin.import_error = RuntimeError("boom")
        with pytest.raises(ProviderError):
            await broker.register(PRINCIPAL, _key_line()[0], 600)
        assert not serializer.locked

    async def test_registrations_never_overlap(self, serializer: RegistrationSerializer):
        oslogin = FakeOsLogin(import_delay=0.01)
        brokers = [CredentialBroker(oslogin, serializer) for _ in range(6)]
        await asyncio.gather(*(b.register(PRINCIPAL, _key_line()[0], 600) for b in brokers))
        assert oslogin.imports == 6
        assert oslogin.max_concurrent_imports == 1

    async def test_unserialized_provider_would_overlap(self):
        oslogin = FakeOsLogin(import_delay=0.01)
        brokers = [
            CredentialBroker(oslogin, RegistrationSerializer.isolated()) for _ in range(4)
        ]
        await asyncio.gather(*(b.register(PRINCIPAL, _key_line()[0], 600) for b in brokers))
        assert oslogin.max_concurrent_imports > 1


class TestOtherFingerprints:
    async def test_excludes_own(self, oslogin: FakeOsLogin, broker: CredentialBroker):
        oslogin.keys = {"aaa": "k1", "bbb": "k2", "mine": "k3"}
        assert await broker.other_fingerprints(PRINCIPAL, "mine") == frozenset({"aaa", "bbb"})

    async def test_empty_profile(self, broker: CredentialBroker):
        assert await broker.other_fingerprints(PRINCIPAL, "mine") == frozenset()

    async def test_not_serialized(
        self, oslogin: FakeOsLogin, broker: CredentialBroker, serializer: RegistrationSerializer,
    ):
        oslogin.keys = {"aaa": "k1"}
        async with serializer._lock:
            result = await asyncio.wait_for(broker.other_fingerprints(PRINCIPAL, "x"), 1)
        assert result == frozenset({"aaa"})

    async def test_failure_is_provider_error(self, oslogin: FakeOsLogin, broker: CredentialBroker):
        oslogin.profile_error = TimeoutError("deadline exceeded")
        with pytest.raises(ProviderError, match="deadline exceeded"):
            await broker.other_fingerprints(PRINCIPAL, "mine")
