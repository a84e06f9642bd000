"""Session configuration.

``OsLoginSSH`` is the immutable settings object every session runs with.
Defaults can be overridden from TOML: ~/.oslogin-ssh/defaults.toml (global)
and oslogin-ssh.toml (project) are deep-merged, project winning.

Example ``oslogin-ssh.toml``::

    [session]
    project = "my-project"
    key_ttl = 300
    race_backoff = 2.0
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, TypeAlias

from oslogin_ssh.core.exceptions import ConfigurationError

RawConfig: TypeAlias = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".oslogin-ssh" / "defaults.toml"
PROJECT_CONFIG_NAME = "oslogin-ssh.toml"


@dataclass(frozen=True, slots=True)
class OsLoginSSH:
    """Settings for one OS Login SSH session.

    Args:
        project: GCP project ID. Auto-detected from env or credentials.
        key_filename: Service account key file. If None, uses ADC.
        key_algorithm: asyncssh algorithm for the ephemeral key.
        key_ttl: Seconds the uploaded key stays valid. Default: 600.
        race_backoff: Seconds to wait before re-probing fingerprints after
            an auth failure. Default: 1.0.
        race_retry_deadline: Optional bound in seconds on race retries.
            None retries for as long as the key set keeps changing.
        lock_token: Name of the process-wide registration lock.
        port: SSH port. Default: 22.
        connect_timeout: SSH connect timeout in seconds.
        thread_pool_size: Workers for blocking Google API calls.
    """

    project: str | None = None
    key_filename: str | None = None
    key_algorithm: str = "ecdsa-sha2-nistp256"
    key_ttl: float = 600.0
    race_backoff: float = 1.0
    race_retry_deadline: float | None = None
    lock_token: str = "key"
    port: int = 22
    connect_timeout: float = 30.0
    thread_pool_size: int = 4

    def __post_init__(self) -> None:
        if self.key_ttl <= 0:
            raise ConfigurationError(f"key_ttl must be positive, got {self.key_ttl}")
        if self.race_backoff < 0:
            raise ConfigurationError(f"race_backoff must be >= 0, got {self.race_backoff}")
        if self.race_retry_deadline is not None and self.race_retry_deadline <= 0:
            raise ConfigurationError(
                f"race_retry_deadline must be positive, got {self.race_retry_deadline}"
            )
        if not 1 <= self.port <= 65535:
            raise ConfigurationError(f"Invalid port {self.port}")
        if self.thread_pool_size < 1:
            raise ConfigurationError("thread_pool_size must be >= 1")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("session", {})
    return merged


def _build(raw: RawConfig) -> OsLoginSSH:
    known = {f.name for f in fields(OsLoginSSH)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown session settings: {', '.join(unknown)}. Valid: {', '.join(sorted(known))}"
        )
    return OsLoginSSH(**raw)


def resolve_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    **overrides: Any,
) -> OsLoginSSH:
    """Build settings from TOML files, then apply non-None overrides."""
    config = load_config(project_dir=project_dir, global_path=global_path)
    raw = dict(config["session"])
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return _build(raw)
