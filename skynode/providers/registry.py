"""Provider registry.

Maps a configured provider type to its implementation. Uses lazy imports to
avoid loading SDK dependencies until a provider is actually built.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from skynode.exceptions import ConfigurationError

if TYPE_CHECKING:
    from skynode.config import ProviderSettings
    from skynode.providers.base import CloudProvider

log = logger.bind(component="registry")

PROVIDER_TYPES = ("ec2",)


def create_provider(settings: ProviderSettings) -> CloudProvider:
    """Create the CloudProvider described by settings.

    Raises:
        ConfigurationError: If the provider type is unknown.
    """
    log.debug("Creating provider for type={type}", type=settings.type)

    match settings.type.lower():
        case "ec2" | "aws":
            from skynode.providers.ec2 import EC2Provider

            waiter = {
                k: int(v)
                for k, v in settings.options.items()
                if k in ("running_wait_delay", "running_max_attempts")
            }
            return EC2Provider(region=settings.region or "us-east-1", **waiter)
        case _:
            raise ConfigurationError(
                f"Unknown provider type '{settings.type}'. "
                f"Valid: {', '.join(PROVIDER_TYPES)}",
                field="type",
            )
