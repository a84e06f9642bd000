"""oslogin-ssh - SSH into GCE instances with ephemeral OS Login keys.

Example:

    import oslogin_ssh

    pending = oslogin_ssh.connect({"zone": "us-central1-a", "name": "vm-1"})
    handle = await pending
    code, out, err = await handle.run("uptime")
    handle.end()

A connection whose key is rejected while another process is rewriting the
same principal's keys is retried. A genuine rejection is raised as
``AuthError`` with ``kind=AuthFailure.GENUINE``.
"""

from oslogin_ssh.broker import CredentialBroker
from oslogin_ssh.config import OsLoginSSH, load_config, resolve_config
from oslogin_ssh.coordinator import RaceRetryCoordinator, State
from oslogin_ssh.core.exceptions import (
    Aborted,
    AuthError,
    AuthFailure,
    ConfigurationError,
    OsLoginSSHError,
    ProviderError,
    ResolutionError,
    TransportError,
)
from oslogin_ssh.identity import EphemeralIdentity, fingerprint_of
from oslogin_ssh.infra.lock import REGISTRATION_LOCK, RegistrationSerializer
from oslogin_ssh.infra.ssh import ConnectionEstablisher, SessionHandle
from oslogin_ssh.observability import LogConfig, setup_logging, teardown_logging
from oslogin_ssh.providers.gcp import InstanceDescriptor, LoginProfile
from oslogin_ssh.session import CancellableSession, SessionFuture, connect

__all__ = [
    "REGISTRATION_LOCK",
    "Aborted",
    "AuthError",
    "AuthFailure",
    "CancellableSession",
    "ConfigurationError",
    "ConnectionEstablisher",
    "CredentialBroker",
    "EphemeralIdentity",
    "InstanceDescriptor",
    "LogConfig",
    "LoginProfile",
    "OsLoginSSH",
    "OsLoginSSHError",
    "ProviderError",
    "RaceRetryCoordinator",
    "RegistrationSerializer",
    "ResolutionError",
    "SessionFuture",
    "SessionHandle",
    "State",
    "TransportError",
    "connect",
    "fingerprint_of",
    "load_config",
    "resolve_config",
    "setup_logging",
    "teardown_logging",
]
