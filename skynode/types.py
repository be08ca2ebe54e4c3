"""Core data types for skynode.

Immutable value objects shared by providers, the lifecycle controller and
the log tailer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from skynode.constants import InstanceState, Stream

if TYPE_CHECKING:
    from skynode.node import Node


# =============================================================================
# Instances
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceHandle:
    """Identifies a provisioned node.

    A snapshot: last_known_state is only as fresh as the provider call that
    produced it. Nothing in skynode treats it as authoritative.

    Attributes:
        provider_instance_id: Provider-assigned id (e.g., "i-0abc...").
        region: Region the instance lives in.
        last_known_state: State observed when the snapshot was taken.
        name: Node name given at creation.
        created_image_name: Human-readable name of the image it booted from.
        public_address: Public IP or hostname, if any.
        private_address: Private IP, if any.
    """

    provider_instance_id: str
    region: str
    last_known_state: InstanceState
    name: str
    created_image_name: str
    public_address: str | None = None
    private_address: str | None = None

    def with_state(self, state: InstanceState) -> InstanceHandle:
        return replace(self, last_known_state=state)

    def with_description(self, description: InstanceDescription) -> InstanceHandle:
        return replace(
            self,
            last_known_state=description.state,
            public_address=description.public_address or self.public_address,
            private_address=description.private_address or self.private_address,
        )


@dataclass(frozen=True, slots=True)
class InstanceDescription:
    """Live provider view of one instance."""

    instance_id: str
    state: InstanceState
    raw_state: str = ""
    public_address: str | None = None
    private_address: str | None = None
    instance_type: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedImage:
    """Image reference resolved against the provider."""

    image_id: str
    name: str


@dataclass(frozen=True, slots=True)
class InstanceTemplate:
    """Provider-neutral description of the instance to create."""

    name: str
    region: str
    instance_type: str
    image: str | None = None
    image_id: str | None = None
    key_pair: str | None = None
    security_groups: tuple[str, ...] = ()
    user_data: bytes | None = None
    tags: dict[str, str] = field(default_factory=dict)


# =============================================================================
# Lifecycle
# =============================================================================


@dataclass(frozen=True, slots=True)
class LifecycleTransition:
    """One start/stop/kill request, alive only for the duration of the call.

    Attributes:
        target: State the transition waits for.
        force: Forced stop (kill). Ignored when starting.
        deadline: time.monotonic() value after which waiting gives up.
    """

    target: InstanceState
    force: bool
    deadline: float

    @classmethod
    def begin(cls, target: InstanceState, force: bool, timeout: float) -> LifecycleTransition:
        return cls(target=target, force=force, deadline=time.monotonic() + timeout)

    @property
    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.deadline


# =============================================================================
# Logs
# =============================================================================


@dataclass(frozen=True, slots=True)
class LogLine:
    """A single line read from a tailed stream.

    The node reference is non-owning; lines are dispatched and dropped.
    """

    text: str
    stream: Stream
    node: Node
