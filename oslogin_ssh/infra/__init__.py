from oslogin_ssh.infra.lock import REGISTRATION_LOCK, RegistrationSerializer
from oslogin_ssh.infra.once import Once
from oslogin_ssh.infra.ssh import ConnectionEstablisher, SessionHandle
from oslogin_ssh.infra.threaded import ThreadPoolRunner

__all__ = [
    "REGISTRATION_LOCK",
    "ConnectionEstablisher",
    "Once",
    "RegistrationSerializer",
    "SessionHandle",
    "ThreadPoolRunner",
]
