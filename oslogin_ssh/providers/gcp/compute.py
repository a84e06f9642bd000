"""Compute Engine inventory: resolve an instance to its external address."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from oslogin_ssh.core.exceptions import ResolutionError
from oslogin_ssh.infra.threaded import ThreadPoolRunner

from .credentials import load_credentials, resolve_project

log = logger.bind(provider="compute")


@dataclass(frozen=True, slots=True)
class InstanceDescriptor:
    """Logical instance to connect to."""

    zone: str
    name: str
    project: str | None = None

    @classmethod
    def parse(cls, raw: InstanceDescriptor | Mapping[str, Any]) -> InstanceDescriptor:
        match raw:
            case InstanceDescriptor():
                return raw
            case {"zone": str() as zone, "name": str() as name}:
                return cls(zone=zone, name=name, project=raw.get("project"))
            case _:
                raise ResolutionError(f"Instance needs 'zone' and 'name', got {raw!r}")


@runtime_checkable
class Inventory(Protocol):
    async def nat_ip(self, zone: str, name: str) -> str | None: ...


def _field(obj: Any, attr: str, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, attr, None)


def extract_external_ip(instance: Any) -> str | None:
    """First ``natIP`` across all access configs of all network interfaces.

    Accepts either a ``compute_v1.Instance`` or its JSON mapping form.
    """
    interfaces = _field(instance, "network_interfaces", "networkInterfaces")
    if not interfaces:
        return None
    for iface in interfaces:
        for config in _field(iface, "access_configs", "accessConfigs") or ():
            ip = _field(config, "nat_i_p", "natIP")
            if ip:
                return str(ip)
    return None


class InventoryClient:
    """Compute Engine instance lookups for one project."""

    def __init__(self, client: Any, project: str, runner: ThreadPoolRunner) -> None:
        self._client = client
        self._project = project
        self._runner = runner

    @property
    def project(self) -> str:
        return self._project

    @classmethod
    def create(
        cls,
        *,
        project: str | None = None,
        key_filename: str | None = None,
        runner: ThreadPoolRunner | None = None,
    ) -> InventoryClient:
        from google.cloud import compute_v1  # type: ignore[reportMissingImports]

        credentials, detected = load_credentials(key_filename)
        resolved = resolve_project(project, detected)
        log.info("Resolved GCP project: {project}", project=resolved)
        return cls(
            client=compute_v1.InstancesClient(credentials=credentials),
            project=resolved,
            runner=runner or ThreadPoolRunner(4, name="compute-io"),
        )

    async def get_instance(self, zone: str, name: str) -> Any:
        try:
            return await self._runner.run(
                self._client.get, project=self._project, zone=zone, instance=name,
            )
        except Exception as e:
            raise ResolutionError(f"Could not look up instance {zone}/{name}: {e}") from e

    async def nat_ip(self, zone: str, name: str) -> str | None:
        return extract_external_ip(await self.get_instance(zone, name))
