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

__all__ = [
    "Aborted",
    "AuthError",
    "AuthFailure",
    "ConfigurationError",
    "OsLoginSSHError",
    "ProviderError",
    "ResolutionError",
    "TransportError",
]
