"""Google credential and project discovery."""

from __future__ import annotations

import os
from typing import Any

from loguru import logger

from oslogin_ssh.core.exceptions import ConfigurationError, ResolutionError

log = logger.bind(provider="gcp")

SCOPES = ("https://www.googleapis.com/auth/cloud-platform",)

_UNRESOLVED_EMAILS = frozenset({"", "default"})


def load_credentials(key_filename: str | None = None) -> tuple[Any, str | None]:
    """Load credentials from a key file, or Application Default Credentials.

    Returns:
        Tuple of (credentials, project_id or None).
    """
    import google.auth  # type: ignore[reportMissingImports]
    from google.auth.exceptions import DefaultCredentialsError  # type: ignore[reportMissingImports]
    from google.oauth2 import service_account  # type: ignore[reportMissingImports]

    if key_filename:
        path = os.path.expanduser(key_filename)
        try:
            creds = service_account.Credentials.from_service_account_file(path, scopes=SCOPES)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot load service account key {path}: {e}") from e
        return creds, creds.project_id

    try:
        return google.auth.default(scopes=list(SCOPES))
    except DefaultCredentialsError as e:
        raise ConfigurationError(
            "No Google credentials found. Pass key_filename= or configure "
            "Application Default Credentials."
        ) from e


def resolve_project(explicit: str | None, detected: str | None = None) -> str:
    """Resolve GCP project: explicit > env > credentials."""
    if explicit:
        return explicit

    if env_project := os.environ.get("GOOGLE_CLOUD_PROJECT"):
        return env_project

    if env_project := os.environ.get("GCLOUD_PROJECT"):
        return env_project

    if detected:
        return detected

    raise ConfigurationError(
        "No GCP project found. Set GOOGLE_CLOUD_PROJECT env var, "
        "pass project=, or configure Application Default Credentials."
    )


def principal_email(credentials: Any) -> str:
    """Return the account email keys are registered under.

    Compute Engine credentials report ``default`` until refreshed, so they
    are refreshed once before giving up.
    """
    email = getattr(credentials, "service_account_email", None) or ""
    if email in _UNRESOLVED_EMAILS and hasattr(credentials, "refresh"):
        from google.auth.transport.requests import Request  # type: ignore[reportMissingImports]

        try:
            credentials.refresh(Request())
        except Exception as e:
            raise ResolutionError(f"Could not refresh Google credentials: {e}") from e
        email = getattr(credentials, "service_account_email", None) or ""

    if email in _UNRESOLVED_EMAILS:
        raise ResolutionError(
            "Credentials carry no service account email; OS Login keys need a principal"
        )
    log.debug("Resolved principal {email}", email=email)
    return email
