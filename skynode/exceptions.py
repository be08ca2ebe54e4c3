"""Custom exception hierarchy for skynode.

All skynode-specific exceptions inherit from SkynodeError, enabling
users to catch all skynode exceptions with a single except clause.
"""

from __future__ import annotations


class SkynodeError(Exception):
    """Base exception for all skynode errors."""


class ConfigurationError(SkynodeError, ValueError):
    """Raised for invalid configuration or missing required settings.

    Attributes:
        field: Name of the offending setting, when a single one is to blame.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ProviderError(SkynodeError):
    """Raised when the cloud provider rejects a create/start/stop call."""


class InstanceNotFoundError(SkynodeError, RuntimeError):
    """Raised when the provider has no instance for a node we created.

    This is never a normal runtime condition: it means lifecycle tracking
    and the provider disagree.
    """

    def __init__(self, instance_id: str, region: str) -> None:
        self.instance_id = instance_id
        self.region = region
        super().__init__(
            f"There is no instance {instance_id} in {region} that corresponds to this node"
        )


class NodeNotRunningError(SkynodeError, RuntimeError):
    """Raised when an operation needs a running node."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} is not running")


class NodeUnreachableError(SkynodeError):
    """Raised when a freshly created node never opens its ports."""

    def __init__(self, host: str, port: int, timeout: float) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        super().__init__(f"Port {port} on {host} not reachable within {timeout:.0f}s")
