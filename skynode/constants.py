"""Centralized constants and enums for skynode.

All magic strings, timeouts, and configuration constants are defined here
to ensure consistency and enable type-safe usage throughout the codebase.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Resource Tags
# =============================================================================


class SkynodeTag(StrEnum):
    """Provider resource tag keys used by skynode."""

    NAME = "Name"
    MANAGED = "skynode:managed"
    NODE = "skynode:node"


# =============================================================================
# Instance States
# =============================================================================


class InstanceState(StrEnum):
    """Lifecycle states a node can be observed in.

    Providers report many intermediate states (pending, stopping, ...);
    anything that is not exactly running or stopped is UNKNOWN.
    """

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, raw: str | None) -> InstanceState:
        match (raw or "").lower():
            case "running":
                return cls.RUNNING
            case "stopped":
                return cls.STOPPED
            case _:
                return cls.UNKNOWN


class Stream(StrEnum):
    """Origin of a tailed log line."""

    STDOUT = "stdout"
    STDERR = "stderr"


# =============================================================================
# Lifecycle Timeouts (in seconds)
# =============================================================================

TRANSITION_TIMEOUT: Final = 240.0
TRANSITION_POLL_INTERVAL: Final = 5.0

WAIT_FOR_PORTS_TIMEOUT: Final = 600.0
WAIT_FOR_PORTS_INTERVAL: Final = 2.0

EC2_RUNNING_WAIT_DELAY: Final = 5
EC2_RUNNING_MAX_ATTEMPTS: Final = 120


# =============================================================================
# Log Tailing
# =============================================================================

TAIL_POLL_INTERVAL: Final = 0.05
TAIL_READ_SIZE: Final = 4096
TAIL_MAX_LINE_LENGTH: Final = 64 * 1024
TAIL_COMMAND: Final = "sudo tail -f"


# =============================================================================
# SSH
# =============================================================================

DEFAULT_SSH_USER: Final = "root"
DEFAULT_SSH_PORT: Final = 22
SSH_CONNECT_TIMEOUT: Final = 30.0
SSH_CONNECT_RETRY_DELAY: Final = 5.0
