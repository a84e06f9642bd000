"""Google Cloud collaborators: OS Login and Compute Engine.

NOTE: Google client libraries are imported lazily inside ``create()`` so
the fakes used in tests never need them.

Environment Variables:
    GOOGLE_CLOUD_PROJECT: GCP project ID (used when not passed directly)
    GOOGLE_APPLICATION_CREDENTIALS: Path to service account key (optional)
"""

from __future__ import annotations

from .compute import InstanceDescriptor, Inventory, InventoryClient, extract_external_ip
from .oslogin import IdentityProvider, LoginProfile, OsLoginClient

__all__ = [
    "IdentityProvider",
    "InstanceDescriptor",
    "Inventory",
    "InventoryClient",
    "LoginProfile",
    "OsLoginClient",
    "extract_external_ip",
]
