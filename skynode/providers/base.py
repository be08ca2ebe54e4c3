"""Cloud provider protocol.

A Node is composed over one CloudProvider; each cloud supplies a single
implementation. The provider is shared by every node of a session and is
expected to be safe for concurrent read-mostly use.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from skynode.types import InstanceDescription, InstanceHandle, InstanceTemplate


@runtime_checkable
class CloudProvider(Protocol):
    """Vendor calls the lifecycle core depends on."""

    @property
    def human_readable_name(self) -> str:
        """Name used in log messages (e.g., "Amazon EC2")."""
        ...

    def create_instance(self, template: InstanceTemplate) -> InstanceHandle:
        """Create one instance and return its handle.

        Raises:
            ProviderError: If the provider rejects the request.
            ConfigurationError: If the template cannot be resolved.
        """
        ...

    def start_instance(self, region: str, instance_id: str) -> None:
        """Ask the provider to start an instance. Does not wait."""
        ...

    def stop_instance(self, region: str, instance_id: str, force: bool) -> None:
        """Ask the provider to stop an instance. Does not wait."""
        ...

    def describe_instance(self, region: str, instance_id: str) -> InstanceDescription | None:
        """Fetch live state, or None when the provider knows no such instance."""
        ...
