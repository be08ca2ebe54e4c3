"""Skynode - Drive cloud compute nodes and follow their logs.

Example:

    from skynode import ConsoleEcho, EC2Provider, Node, NodeConfig

    provider = EC2Provider(region="us-east-1")
    node = Node.create(
        provider,
        "web-1",
        NodeConfig(region="us-east-1", instance_type="t2.micro", image="ubuntu/images/*"),
    )

    with node.tail("/var/log/cloud-init-output.log", ConsoleEcho()):
        node.stop()
        node.start()

    node.kill()
"""

# Configuration
from skynode.config import NodeConfig, ProviderSettings, load_config, resolve_node

# Constants
from skynode.constants import InstanceState, Stream

# Exceptions
from skynode.exceptions import (
    ConfigurationError,
    InstanceNotFoundError,
    NodeNotRunningError,
    NodeUnreachableError,
    ProviderError,
    SkynodeError,
)

# Log handlers
from skynode.handlers import CallbackHandler, ConsoleEcho, LogHandler, LogHandlerRegistry

# Lifecycle
from skynode.lifecycle import LifecycleController

# Logging
from skynode.logging import LogConfig, setup_logging, teardown_logging

# Nodes
from skynode.node import Node

# Providers
from skynode.providers import CloudProvider, EC2Provider, create_provider

# Remote execution
from skynode.remote import CommandExecution, RemoteExecutor, SSHConfig, SSHExecutor

# Tailing
from skynode.tailing import StreamTailer

# Types
from skynode.types import InstanceHandle, InstanceTemplate, LifecycleTransition, LogLine

__version__ = "0.1.0"

__all__ = [
    # Nodes
    "Node",
    "NodeConfig",
    "ProviderSettings",
    "load_config",
    "resolve_node",
    # Lifecycle
    "LifecycleController",
    "LifecycleTransition",
    "InstanceState",
    "InstanceHandle",
    "InstanceTemplate",
    # Providers
    "CloudProvider",
    "EC2Provider",
    "create_provider",
    # Remote execution
    "RemoteExecutor",
    "CommandExecution",
    "SSHConfig",
    "SSHExecutor",
    # Logs
    "StreamTailer",
    "LogLine",
    "Stream",
    "LogHandler",
    "LogHandlerRegistry",
    "ConsoleEcho",
    "CallbackHandler",
    # Logging
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    # Exceptions
    "SkynodeError",
    "ConfigurationError",
    "ProviderError",
    "InstanceNotFoundError",
    "NodeNotRunningError",
    "NodeUnreachableError",
    # Version
    "__version__",
]
