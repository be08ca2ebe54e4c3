"""Node lifecycle transitions: start, stop, kill, and state confirmation.

Each transition issues exactly one provider call and then polls the provider
on the caller's thread until the target state is observed, the deadline
passes, or the wait is interrupted. Timeouts are best-effort: they are
logged, never raised. Callers that need certainty ask for fresh state.

Lifecycle calls on the same node must not overlap; nothing here locks.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from loguru import logger
from tenacity import RetryCallState, RetryError, Retrying, retry_if_result

from skynode.constants import TRANSITION_POLL_INTERVAL, TRANSITION_TIMEOUT, InstanceState
from skynode.exceptions import InstanceNotFoundError, ProviderError, SkynodeError
from skynode.types import InstanceDescription, InstanceHandle, LifecycleTransition

if TYPE_CHECKING:
    from loguru import Logger

    from skynode.providers.base import CloudProvider


class _WaitInterrupted(Exception):
    """Raised from the poll sleep when interrupt() was called."""


class LifecycleController:
    """Drives state transitions of one instance and confirms them by polling.

    Args:
        provider: Shared cloud provider.
        handle: Instance created for the node. Never replaced.
        timeout: Seconds to wait for a transition to be observed.
        interval: Seconds between state polls.
        log: Logger to report on. Defaults to one bound to the node.
    """

    def __init__(
        self,
        provider: CloudProvider,
        handle: InstanceHandle,
        *,
        timeout: float = TRANSITION_TIMEOUT,
        interval: float = TRANSITION_POLL_INTERVAL,
        log: Logger | None = None,
    ) -> None:
        self._provider = provider
        self._handle = handle
        self.timeout = timeout
        self.interval = interval
        self._interrupted = threading.Event()
        self._log = log or logger.bind(
            component="lifecycle",
            node=handle.name,
            instance_id=handle.provider_instance_id,
        )

    @property
    def handle(self) -> InstanceHandle:
        return self._handle

    # -------------------------------------------------------------------------
    # State queries (always live)
    # -------------------------------------------------------------------------

    def describe(self) -> InstanceDescription:
        """Fetch the provider's current view of the instance.

        Raises:
            InstanceNotFoundError: If the provider has no such instance.
        """
        handle = self._handle
        description = self._provider.describe_instance(handle.region, handle.provider_instance_id)
        if description is None:
            raise InstanceNotFoundError(handle.provider_instance_id, handle.region)
        return description

    def current_state(self) -> InstanceState:
        return self.describe().state

    def is_running(self) -> bool:
        return self.current_state() is InstanceState.RUNNING

    def refresh(self) -> InstanceHandle:
        """Fresh metadata snapshot. The controller's own handle is untouched."""
        return self._handle.with_description(self.describe())

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def interrupt(self) -> None:
        """Stop waiting in an in-progress transition, from any thread."""
        self._interrupted.set()

    def transition_to(self, target: InstanceState, force: bool = False) -> None:
        """Request a state change and wait (best-effort) until it is observed.

        RUNNING issues a start (force is ignored); STOPPED issues a stop,
        forced when force is True.

        Args:
            target: InstanceState.RUNNING or InstanceState.STOPPED.
            force: Forced stop (kill semantics).

        Raises:
            ValueError: If target is not RUNNING or STOPPED.
            ProviderError: If the provider rejects the call.
            InstanceNotFoundError: If the instance disappears while polling.
        """
        if target not in (InstanceState.RUNNING, InstanceState.STOPPED):
            raise ValueError(f"Cannot transition to {target}")

        self._interrupted.clear()
        transition = LifecycleTransition.begin(target, force, self.timeout)
        handle = self._handle

        try:
            if target is InstanceState.STOPPED:
                self._provider.stop_instance(handle.region, handle.provider_instance_id, force)
            else:
                self._provider.start_instance(handle.region, handle.provider_instance_id)
        except SkynodeError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{self._provider.human_readable_name} rejected transition of "
                f"{handle.provider_instance_id} to {target}: {e}"
            ) from e

        self._await(transition)

    def _await(self, transition: LifecycleTransition) -> None:
        def expired(_: RetryCallState) -> bool:
            return transition.expired

        def next_poll(_: RetryCallState) -> float:
            return min(self.interval, transition.remaining)

        retrying = Retrying(
            stop=expired,
            wait=next_poll,
            retry=retry_if_result(lambda state: state is not transition.target),
            sleep=self._sleep,
        )

        try:
            retrying(self.current_state)
        except RetryError as e:
            self._log.warning(
                "Instance {id} hasn't switched state to {target} in time: {timeout:.0f} seconds. "
                "Current instance state is: {state}",
                id=self._handle.provider_instance_id,
                target=transition.target,
                timeout=self.timeout,
                state=e.last_attempt.result(),
            )
            return
        except _WaitInterrupted:
            self._log.warning(
                "Waiting for instance {id} to switch state to {target} was interrupted",
                id=self._handle.provider_instance_id,
                target=transition.target,
            )
            return

        self._log.debug(
            "Instance {id} reached state {target}",
            id=self._handle.provider_instance_id,
            target=transition.target,
        )

    def _sleep(self, seconds: float) -> None:
        if self._interrupted.wait(seconds):
            raise _WaitInterrupted()
