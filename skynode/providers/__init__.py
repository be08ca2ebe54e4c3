"""Cloud providers for skynode."""

from skynode.providers.base import CloudProvider
from skynode.providers.ec2 import EC2Provider
from skynode.providers.registry import create_provider

__all__ = [
    "CloudProvider",
    "EC2Provider",
    "create_provider",
]
