"""
Reusable provider bookkeeping: registry, action queue, event channel and the action worker.

`DefaultProvider` implements everything a concrete provider has in common and is meant to be
subclassed:

- Installations and instances go through a staged `Registry`; workers call
  `registry.apply_pending()` before reading it.
- `request_action()` admits supported actions into a bounded `ActionQueue` and answers PENDING.
  A full queue rejects the request instead of blocking the callback request thread.
- A single action worker thread drains the queue and turns every accepted action into exactly
  one update event carrying a terminal status (COMPLETED or FAILED), even if the handler raises.
- Results are published on the bounded `EventChannel`, which blocks producers while the relay
  is behind.

Subclasses declare which actions they support and how to execute them by overriding
`supported_actions()` and `handle_action()`.
"""

import logging
import threading
from typing import FrozenSet, List, Optional

from core.event_channel import DEFAULT_CAPACITY, ActionQueue, EventChannel
from core.registry import Registry
from monitoring.metrics import ACTIONS_TOTAL, ERROR_COUNT, EVENTS_PUBLISHED
from shared.errors import ActionNotSupportedError, ActionQueueFullError, ChannelClosedError
from shared.models import (
    ActionRequest,
    ActionRequestStatus,
    ActionStatusUpdate,
    Installation,
    Instance,
    PendingAction,
    UpdateEvent,
)

from .base import Provider

ACTION_NOT_SUPPORTED = "action not supported"

# Upper bound for joining worker threads on shutdown
_JOIN_TIMEOUT_SECONDS = 5.0


class DefaultProvider(Provider):
    """
    Provider with staged registration and an asynchronous action pipeline.

    Args:
        action_queue_capacity (int): Maximum number of accepted actions waiting for the worker.
        event_channel_capacity (int): Maximum number of unrelayed update events.
        logger (logging.Logger, optional): Logger; defaults to the module logger.
    """

    def __init__(
        self,
        action_queue_capacity: int = DEFAULT_CAPACITY,
        event_channel_capacity: int = DEFAULT_CAPACITY,
        logger: Optional[logging.Logger] = None,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self.registry = Registry(logger=self._logger)
        self.action_queue = ActionQueue(capacity=action_queue_capacity, logger=self._logger)
        self._update_channel = EventChannel(capacity=event_channel_capacity, logger=self._logger)
        self._threads: List[threading.Thread] = []

    # --- Provider contract ---

    @property
    def update_channel(self) -> EventChannel:
        return self._update_channel

    def register_installations(self, *installations: Installation) -> None:
        self.registry.register_installations(*installations)

    def remove_installation(self, installation_id: str) -> None:
        self.registry.remove_installation(installation_id)

    def register_instances(self, *instances: Instance) -> None:
        self.registry.register_instances(*instances)

    def remove_instance(self, instance_id: str) -> None:
        self.registry.remove_instance(instance_id)

    def request_action(self, instance: Instance, request: ActionRequest) -> ActionRequestStatus:
        if request.action_id not in self.supported_actions():
            ACTIONS_TOTAL.labels(action=request.action_id, status=ActionRequestStatus.FAILED.value).inc()
            raise ActionNotSupportedError(ACTION_NOT_SUPPORTED)

        if not self.action_queue.enqueue(PendingAction(request=request, instance=instance)):
            self._logger.warning(
                "Action queue full, rejecting action %s (%s)", request.id, request.action_id
            )
            ACTIONS_TOTAL.labels(action=request.action_id, status=ActionRequestStatus.FAILED.value).inc()
            raise ActionQueueFullError()

        self._logger.info("Queued action %s (%s) for instance %s", request.id, request.action_id, instance.id)
        return ActionRequestStatus.PENDING

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        self._start_thread(self.run_action_worker, "action-worker")

    def stop(self) -> None:
        """Close the action queue and the event channel, then join the worker threads."""
        self.action_queue.close()
        self._update_channel.close()
        for thread in self._threads:
            thread.join(timeout=_JOIN_TIMEOUT_SECONDS)
            if thread.is_alive():
                self._logger.warning("Thread %s did not stop within %.1fs", thread.name, _JOIN_TIMEOUT_SECONDS)
        self._threads = []

    # --- extension points ---

    def supported_actions(self) -> FrozenSet[str]:
        """Action ids accepted by `request_action`. The default provider supports none."""
        return frozenset()

    def handle_action(self, action: PendingAction) -> UpdateEvent:
        """
        Execute one accepted action and return the event carrying its terminal status.

        Called on the action worker thread, one action at a time.
        """
        return self.action_failed(action, ACTION_NOT_SUPPORTED)

    # --- helpers for subclasses ---

    def publish(self, event: UpdateEvent) -> None:
        """
        Publish an update event, blocking while the event channel is full.

        Raises:
            ChannelClosedError: If the provider is shutting down.
        """
        self._update_channel.publish(event)
        if event.property_update and event.action_status:
            kind = "combined"
        elif event.property_update:
            kind = "property"
        else:
            kind = "action"
        EVENTS_PUBLISHED.labels(kind=kind).inc()

    @staticmethod
    def action_failed(action: PendingAction, error: str) -> UpdateEvent:
        return UpdateEvent(
            action_status=ActionStatusUpdate(
                instance_id=action.instance.id,
                request_id=action.id,
                status=ActionRequestStatus.FAILED,
                error=error,
            )
        )

    def run_action_worker(self) -> None:
        """Drain the action queue until it is closed; one terminal event per action."""
        self._logger.info("Action worker started")
        for action in self.action_queue:
            # Actions may refer to installations registered after the last polling cycle.
            self.registry.apply_pending()
            try:
                event = self.handle_action(action)
            except Exception as e:
                self._logger.exception("Action %s (%s) failed unexpectedly", action.id, action.action_id)
                ERROR_COUNT.labels(type="provider", location="action_worker").inc()
                event = self.action_failed(action, f"action failed: {e.__class__.__name__}")

            if event.action_status is not None:
                ACTIONS_TOTAL.labels(action=action.action_id, status=event.action_status.status.value).inc()
            try:
                self.publish(event)
            except ChannelClosedError:
                self._logger.info("Event channel closed, dropping result of action %s", action.id)
                break
        self._logger.info("Action worker stopped")

    def _start_thread(self, target, name: str) -> threading.Thread:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)
        return thread
