"""
Giphy provider: periodic random GIFs and the keyword search action.

Each registered instance owns one Thing with two components:

- `random`: its `value` property is refreshed with a random GIF URL on every polling cycle.
- `search`: its `value` property is set by the `search` action (parameter `keyword`).

The Giphy API key is configured per installation (`giphy_api_key`). All instances share a
single GIF client whose `api_key` and `limit` attributes are mutated before each call, so every
use of the client goes through `credentialed()`, which holds a lock for the duration of the
call.

The polling loop is an APScheduler interval job (`max_instances=1`, `coalesce=True`) that runs
once at start-up and then every `poll_interval_seconds`. The search action runs on the action
worker inherited from `DefaultProvider`.
"""

import datetime as _dt
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, FrozenSet, Iterator, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.event_channel import DEFAULT_CAPACITY
from gif_api.base import GifClient
from monitoring.metrics import ERROR_COUNT, POLL_CYCLE_TIME
from shared.errors import ChannelClosedError, CredentialNotFoundError, GifApiError
from shared.models import (
    GIPHY_API_KEY_CONFIG,
    RANDOM_COMPONENT_ID,
    RANDOM_PROPERTY_ID,
    SEARCH_ACTION_ID,
    SEARCH_ACTION_PARAMETER_ID,
    SEARCH_COMPONENT_ID,
    SEARCH_PROPERTY_ID,
    ActionRequestStatus,
    ActionStatusUpdate,
    PendingAction,
    PropertyUpdate,
    UpdateEvent,
)

from .default_provider import DefaultProvider

DEFAULT_POLL_INTERVAL_SECONDS = 60
NO_SEARCH_RESULT = "no search result found"
POLL_JOB_ID = "giphy_random_poll"


class GiphyProvider(DefaultProvider):
    """
    Provider backed by a shared `GifClient`.

    Args:
        gif_client (GifClient): Client shared by the polling loop and the action worker.
        poll_interval_seconds (float): Seconds between two polling cycles.
        search_limit (int): Number of results requested per search; the first one is used.
        action_queue_capacity (int): See `DefaultProvider`.
        event_channel_capacity (int): See `DefaultProvider`.
        logger (logging.Logger, optional): Logger; defaults to the module logger.
    """

    def __init__(
        self,
        gif_client: GifClient,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        search_limit: int = 1,
        action_queue_capacity: int = DEFAULT_CAPACITY,
        event_channel_capacity: int = DEFAULT_CAPACITY,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(
            action_queue_capacity=action_queue_capacity,
            event_channel_capacity=event_channel_capacity,
            logger=logger or logging.getLogger(__name__),
        )
        self._gif_client = gif_client
        self._client_lock = threading.Lock()
        self._default_limit = gif_client.limit
        self.poll_interval_seconds = poll_interval_seconds
        self.search_limit = search_limit
        self._scheduler: Optional[BackgroundScheduler] = None
        self._action_handlers: Dict[str, Callable[[PendingAction], UpdateEvent]] = {
            SEARCH_ACTION_ID: self._search,
        }

    # --- lifecycle ---

    def start(self) -> None:
        super().start()
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            self.run_poll_job,
            trigger=IntervalTrigger(seconds=self.poll_interval_seconds),
            id=POLL_JOB_ID,
            next_run_time=_dt.datetime.now(_dt.timezone.utc),
            coalesce=True,
            max_instances=1,
        )
        scheduler.start()
        self._scheduler = scheduler
        self._logger.info("Giphy provider started, polling every %ss", self.poll_interval_seconds)

    @property
    def running(self) -> bool:
        return super().running and self._scheduler is not None and self._scheduler.running

    def stop(self) -> None:
        if self._scheduler is not None:
            try:
                self._scheduler.shutdown(wait=False)
            except Exception as e:
                self._logger.warning("Failed to stop the polling scheduler: %s", e)
            self._scheduler = None
        super().stop()
        self._logger.info("Giphy provider stopped")

    # --- credentialed client ---

    @contextmanager
    def credentialed(self, installation_id: str) -> Iterator[GifClient]:
        """
        Lend the shared GIF client configured with the installation's API key.

        The lock is held until the `with` block exits; the key and limit are reset afterwards.

        Raises:
            CredentialNotFoundError: If the installation is not registered or has no API key.
        """
        with self._client_lock:
            installation = self.registry.get_installation(installation_id)
            if installation is None:
                raise CredentialNotFoundError("installation not registered")
            key = installation.get_config(GIPHY_API_KEY_CONFIG)
            if key is None or not key.value:
                raise CredentialNotFoundError("could not find api key")

            self._gif_client.api_key = key.value
            try:
                yield self._gif_client
            finally:
                self._gif_client.api_key = ""
                self._gif_client.limit = self._default_limit

    # --- polling loop ---

    def run_poll_job(self) -> None:
        """Scheduler entry point: one polling cycle that never raises."""
        try:
            self.poll_once()
        except Exception:
            ERROR_COUNT.labels(type="provider", location="poll").inc()
            self._logger.exception("Polling cycle failed")

    def poll_once(self) -> int:
        """
        Run one polling cycle and return the number of published property updates.

        Staged registrations are applied first, so instances registered during a cycle are
        picked up by the next one. Instances without a Thing, without a credential or whose
        GIF request fails are skipped until the next cycle.
        """
        start = time.time()
        published = 0
        self.registry.apply_pending()
        try:
            for instance in self.registry.instances():
                if not instance.thing_ids:
                    self._logger.info("Instance %s has no thing id yet, skipping", instance.id)
                    continue
                try:
                    with self.credentialed(instance.installation_id) as client:
                        url = client.random()
                except CredentialNotFoundError as e:
                    self._logger.error(
                        "No Giphy credential for installation %s (instance %s): %s",
                        instance.installation_id, instance.id, e,
                    )
                    continue
                except GifApiError as e:
                    self._logger.error("Failed to resolve random gif for instance %s: %s", instance.id, e)
                    continue

                self.publish(UpdateEvent(property_update=PropertyUpdate(
                    instance_id=instance.id,
                    thing_id=instance.thing_ids[0],
                    component_id=RANDOM_COMPONENT_ID,
                    property_id=RANDOM_PROPERTY_ID,
                    value=url,
                )))
                published += 1
        except ChannelClosedError:
            self._logger.info("Event channel closed, ending polling cycle early")
        finally:
            POLL_CYCLE_TIME.observe(time.time() - start)
        self._logger.debug("Polling cycle published %d updates", published)
        return published

    # --- actions ---

    def supported_actions(self) -> FrozenSet[str]:
        return frozenset(self._action_handlers)

    def handle_action(self, action: PendingAction) -> UpdateEvent:
        handler = self._action_handlers.get(action.action_id)
        if handler is None:
            return super().handle_action(action)
        return handler(action)

    def _search(self, action: PendingAction) -> UpdateEvent:
        keyword = action.parameters.get(SEARCH_ACTION_PARAMETER_ID, "")
        try:
            with self.credentialed(action.instance.installation_id) as client:
                client.limit = self.search_limit
                results = client.search(keyword)
        except (CredentialNotFoundError, GifApiError) as e:
            self._logger.error("Search for action %s failed: %s", action.id, e)
            return self.action_failed(action, str(e))

        if not results:
            return self.action_failed(action, NO_SEARCH_RESULT)

        self._logger.info("Search for %r finished: %s", keyword, results[0])
        return UpdateEvent(
            property_update=PropertyUpdate(
                instance_id=action.instance.id,
                thing_id=action.request.thing_id,
                component_id=SEARCH_COMPONENT_ID,
                property_id=SEARCH_PROPERTY_ID,
                value=results[0],
            ),
            action_status=ActionStatusUpdate(
                instance_id=action.instance.id,
                request_id=action.id,
                status=ActionRequestStatus.COMPLETED,
            ),
        )
