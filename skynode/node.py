"""Node - the handle callers use to drive one provisioned instance.

A Node composes the InstanceHandle created for it, a LifecycleController
for start/stop/kill, and a way to run commands on the machine. It keeps no
state of its own beyond that identity: every state question goes to the
provider.

Example:
    from skynode import EC2Provider, Node, NodeConfig

    provider = EC2Provider(region="us-east-1")
    node = Node.create(
        provider,
        "web-1",
        NodeConfig(region="us-east-1", instance_type="t2.micro", image_id="ami-0abc"),
    )
    with node.tail("/var/log/syslog", ConsoleEcho()):
        node.kill()
    assert not node.is_running()
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger

from skynode.config import NodeConfig
from skynode.constants import (
    TAIL_POLL_INTERVAL,
    TAIL_READ_SIZE,
    TRANSITION_POLL_INTERVAL,
    TRANSITION_TIMEOUT,
    InstanceState,
)
from skynode.exceptions import ConfigurationError
from skynode.handlers import LogHandler, LogHandlerRegistry
from skynode.lifecycle import LifecycleController
from skynode.ports import wait_for_ports
from skynode.remote import RemoteExecutor, SSHConfig, SSHExecutor
from skynode.tailing import StreamTailer
from skynode.types import InstanceHandle, InstanceTemplate

if TYPE_CHECKING:
    from loguru import Logger

    from skynode.providers.base import CloudProvider

type ExecutorFactory = Callable[[Node], RemoteExecutor]


def _ssh_executor(node: Node) -> RemoteExecutor:
    # Public addresses change across stop/start, so always look it up fresh.
    address = _address_of(node.current_metadata_snapshot())
    if not address:
        raise RuntimeError(f"Node {node.name} has no public or private address")
    return SSHExecutor(
        SSHConfig(
            host=address,
            username=node.config.ssh_user,
            key_path=node.config.ssh_private_key_file,
        )
    )


def _address_of(handle: InstanceHandle) -> str | None:
    return handle.public_address or handle.private_address


def _read_user_data(config: NodeConfig, log: Logger) -> bytes | None:
    if config.user_data:
        return config.user_data.encode("utf-8")

    path = config.user_data_file
    if path is None:
        return None
    if not path.is_file():
        log.error(
            "User data file location is specified ({path}), but it doesn't contain readable data.",
            path=path,
        )
        return None
    try:
        return path.read_bytes()
    except OSError:
        log.exception("Unable to read user data file {path}", path=path)
        return None


class Node:
    """A provisioned compute node.

    Use Node.create() to provision one. Lifecycle calls block the caller
    until the provider reports the target state or the transition times out;
    they must not be issued concurrently on the same node.

    Args:
        provider: Shared cloud provider.
        handle: Instance created for this node.
        config: Settings the node was created with.
        executor_factory: Opens a RemoteExecutor to the node. Defaults to SSH.
        transition_timeout: Seconds to wait for start/stop/kill to be observed.
        poll_interval: Seconds between state polls.
        log: Logger to report on. Defaults to one bound to the node name.
    """

    def __init__(
        self,
        provider: CloudProvider,
        handle: InstanceHandle,
        config: NodeConfig,
        *,
        executor_factory: ExecutorFactory | None = None,
        transition_timeout: float = TRANSITION_TIMEOUT,
        poll_interval: float = TRANSITION_POLL_INTERVAL,
        log: Logger | None = None,
    ) -> None:
        self._provider = provider
        self._handle = handle
        self._config = config
        self._executor_factory = executor_factory or _ssh_executor
        self._log = log or logger.bind(component="node", node=handle.name)
        self._lifecycle = LifecycleController(
            provider,
            handle,
            timeout=transition_timeout,
            interval=poll_interval,
            log=self._log,
        )

    @classmethod
    def create(
        cls,
        provider: CloudProvider,
        name: str,
        config: NodeConfig,
        *,
        executor_factory: ExecutorFactory | None = None,
        transition_timeout: float = TRANSITION_TIMEOUT,
        poll_interval: float = TRANSITION_POLL_INTERVAL,
        log: Logger | None = None,
    ) -> Node:
        """Provision a new node and wait until its configured ports are open.

        Raises:
            ConfigurationError: If region or instance type is missing.
            ProviderError: If the provider refuses to create the instance.
            NodeUnreachableError: If configured ports never open.
        """
        log = log or logger.bind(component="node", node=name)

        if not config.region:
            raise ConfigurationError(f"No region was provided for node {name}", field="region")
        if not config.instance_type:
            raise ConfigurationError(
                f"No instance type was provided for node {name}", field="instance_type",
            )

        template = InstanceTemplate(
            name=name,
            region=config.region,
            instance_type=config.instance_type,
            image=config.image,
            image_id=config.image_id,
            key_pair=config.key_pair,
            security_groups=config.security_groups,
            user_data=_read_user_data(config, log),
        )

        log.debug(
            "Creating {provider} node from template: {template}",
            provider=provider.human_readable_name, template=template,
        )
        handle = provider.create_instance(template)
        log.info(
            "Started {provider} node '{name}' from image {image}, its public IP address is {address}",
            provider=provider.human_readable_name,
            name=name,
            image=handle.created_image_name,
            address=handle.public_address,
        )

        node = cls(
            provider,
            handle,
            config,
            executor_factory=executor_factory,
            transition_timeout=transition_timeout,
            poll_interval=poll_interval,
            log=log,
        )
        node.wait_for_ports()
        return node

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._handle.name

    @property
    def created_image_name(self) -> str:
        return self._handle.created_image_name

    @property
    def provider_instance_id(self) -> str:
        return self._handle.provider_instance_id

    @property
    def region(self) -> str:
        return self._handle.region

    @property
    def instance_type(self) -> str | None:
        return self._config.instance_type

    @property
    def config(self) -> NodeConfig:
        return self._config

    @property
    def provider(self) -> CloudProvider:
        return self._provider

    @property
    def lifecycle(self) -> LifecycleController:
        return self._lifecycle

    @property
    def initial_metadata(self) -> InstanceHandle:
        """Snapshot taken at creation. Use current_metadata_snapshot() for live data."""
        return self._handle

    def __repr__(self) -> str:
        return f"Node(name={self.name!r}, instance={self.provider_instance_id!r}, region={self.region!r})"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start (or restart) the instance."""
        self._transition("Starting", "Started", InstanceState.RUNNING, force=False)

    def stop(self) -> None:
        """Stop the instance. It can be started again later."""
        self._transition("Stopping", "Stopped", InstanceState.STOPPED, force=False)

    def kill(self) -> None:
        """Force-stop the instance. It is not destroyed and can be started again."""
        self._transition("Killing", "Killed", InstanceState.STOPPED, force=True)

    def interrupt(self) -> None:
        """Stop waiting in a lifecycle call running on another thread."""
        self._lifecycle.interrupt()

    def _transition(self, doing: str, done: str, target: InstanceState, *, force: bool) -> None:
        provider = self._provider.human_readable_name
        self._log.info("{doing} {provider} node '{name}'", doing=doing, provider=provider, name=self.name)
        self._log.debug(
            "{doing} instance: {id}", doing=doing, id=self.provider_instance_id,
        )
        self._lifecycle.transition_to(target, force=force)
        self._log.info("{done} {provider} node '{name}'", done=done, provider=provider, name=self.name)

    def is_running(self) -> bool:
        """Whether the provider currently reports the instance as running.

        Raises:
            InstanceNotFoundError: If the provider has no such instance.
        """
        return self._lifecycle.is_running()

    def current_metadata_snapshot(self) -> InstanceHandle:
        """Fresh instance metadata from the provider."""
        return self._lifecycle.refresh()

    def wait_for_ports(self) -> None:
        """Block until every configured port accepts connections."""
        ports = self._config.wait_for_ports
        if not ports:
            return
        address = _address_of(self._handle)
        if not address:
            self._log.warning("Node {name} has no address; not waiting for ports", name=self.name)
            return
        self._log.info(
            "Waiting for ports {ports} on {address}",
            ports=", ".join(map(str, ports)), address=address,
        )
        wait_for_ports(address, ports, timeout=self._config.wait_for_ports_timeout)

    # -------------------------------------------------------------------------
    # Remote access
    # -------------------------------------------------------------------------

    def ssh(self) -> RemoteExecutor:
        """Open a command executor on the node. The caller closes it."""
        return self._executor_factory(self)

    def tail(
        self,
        remote_path: str,
        *handlers: LogHandler,
        registry: LogHandlerRegistry | None = None,
        poll_interval: float = TAIL_POLL_INTERVAL,
        read_size: int = TAIL_READ_SIZE,
        encoding: str = "utf-8",
    ) -> StreamTailer:
        """Follow remote_path and deliver its lines to handlers.

        Pass a registry to share handlers between sessions; handlers given
        positionally are added to it.

        Returns:
            The running tailer. Stop it (or use it as a context manager) when done.

        Raises:
            NodeNotRunningError: If the node is not running.
        """
        if registry is None:
            registry = LogHandlerRegistry()
        for handler in handlers:
            registry.register(handler)
        tailer = StreamTailer(
            self, registry, poll_interval=poll_interval, read_size=read_size, encoding=encoding,
        )
        tailer.follow(remote_path)
        return tailer
