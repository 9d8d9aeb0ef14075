"""
Connector service: protocol semantics between the platform callbacks, the database and the
provider, plus the relay that forwards provider events back to the platform.

Callback handling (called from request threads):

- installations and instances are persisted first and registered with the provider last, so the
  provider never sees an entity the database does not know,
- new instances get their Things created on the platform before they are registered,
- removals unregister from the provider before deleting from the database; once the token is
  deleted the platform can no longer be notified about in-flight events,
- actions are resolved to their instance by Thing ID and handed to the provider.

Event relay (one background thread): drains the provider's update channel and turns every
event into platform calls, property update first and action status second. A failed property
update downgrades the paired action status to FAILED. Errors are logged and the relay moves on
to the next event.
"""

import logging
import threading
from typing import Optional

from monitoring.metrics import ERROR_COUNT, EVENTS_RELAYED
from platform_api.client import PlatformClient
from provider_api.base import Provider
from services.database import Database
from services.thing_templates import ThingTemplates, giphy_thing_templates
from shared.errors import InstallationNotFoundError, InstanceNotFoundError, NotFoundError
from shared.models import (
    ActionRequest,
    ActionRequestStatus,
    ActionResponse,
    ActionStatusUpdate,
    Installation,
    InstallationRequest,
    InstallationResponse,
    Instance,
    InstantiationRequest,
    InstantiationResponse,
    UpdateEvent,
)

THING_NOT_FOUND = "thing ID was not found at connector"

_JOIN_TIMEOUT_SECONDS = 5.0


class ConnectorService:
    """
    Args:
        database (Database): System of record for installations, instances and Thing IDs.
        platform_client (PlatformClient): Outbound client for the Things platform.
        provider (Provider): Provider producing update events.
        thing_templates (ThingTemplates): Builds the Things created for a new instance.
        logger (logging.Logger, optional): Logger; defaults to the module logger.
    """

    def __init__(
        self,
        database: Database,
        platform_client: PlatformClient,
        provider: Provider,
        thing_templates: ThingTemplates = giphy_thing_templates,
        logger: Optional[logging.Logger] = None,
    ):
        self.database = database
        self.platform_client = platform_client
        self.provider = provider
        self.thing_templates = thing_templates
        self._logger = logger or logging.getLogger(__name__)
        self._relay_thread: Optional[threading.Thread] = None

    def init(self) -> None:
        """Register every persisted installation and instance with the provider."""
        installations = self.database.get_installations()
        self.provider.register_installations(*installations)
        instances = self.database.get_instances()
        self.provider.register_instances(*instances)
        self._logger.info(
            "Loaded %d installations and %d instances from the database", len(installations), len(instances)
        )

    # --- callbacks ---

    def add_installation(self, request: InstallationRequest) -> Optional[InstallationResponse]:
        self._logger.info(
            "Received an installation request for %s", request.id,
            extra={'extra_fields': {'installation_id': request.id}},
        )
        self.database.add_installation(request)
        if request.configuration:
            self.database.add_installation_configuration(request.id, request.configuration)

        self.provider.register_installations(Installation(
            id=request.id,
            token=request.token,
            configuration=list(request.configuration),
        ))
        return None

    def remove_installation(self, installation_id: str) -> None:
        self._logger.info("Received an installation removal request for %s", installation_id)
        try:
            self.provider.remove_installation(installation_id)
        except NotFoundError:
            self._logger.error("Tried to remove installation %s that is not registered", installation_id)

        try:
            self.database.remove_installation(installation_id)
        except NotFoundError as e:
            raise InstallationNotFoundError() from e

    def add_instance(self, request: InstantiationRequest) -> Optional[InstantiationResponse]:
        self._logger.info(
            "Received an instantiation request for %s (installation %s)", request.id, request.installation_id,
            extra={'extra_fields': {'instance_id': request.id, 'installation_id': request.installation_id}},
        )
        self.database.add_instance(request)
        try:
            if request.configuration:
                self.database.add_instance_configuration(request.id, request.configuration)
            thing_ids = [self.create_thing(request.id, thing) for thing in self.thing_templates(request)]
        except Exception:
            # An instance is only stored together with its Things
            try:
                self.database.remove_instance(request.id)
            except Exception:
                self._logger.exception("Failed to roll back instance %s", request.id)
            raise

        self.provider.register_instances(Instance(
            id=request.id,
            installation_id=request.installation_id,
            token=request.token,
            thing_ids=thing_ids,
            configuration=list(request.configuration),
        ))
        return None

    def remove_instance(self, instance_id: str) -> None:
        self._logger.info("Received an instance removal request for %s", instance_id)
        try:
            self.provider.remove_instance(instance_id)
        except NotFoundError:
            self._logger.error("Tried to remove instance %s that is not registered", instance_id)

        try:
            self.database.remove_instance(instance_id)
        except NotFoundError as e:
            raise InstanceNotFoundError() from e

    def perform_action(self, request: ActionRequest) -> Optional[ActionResponse]:
        """
        Hand an action to the provider.

        Returns:
            Optional[ActionResponse]: None when the action completed synchronously, a PENDING
            response when the result follows later, or a FAILED response when the Thing is
            unknown.

        Raises:
            ConnectorError: When the provider rejects the action.
        """
        self._logger.info("Received action request %s (%s) for thing %s", request.id, request.action_id, request.thing_id)
        try:
            instance = self.database.get_instance_by_thing_id(request.thing_id)
        except NotFoundError:
            self._logger.error("Could not retrieve the instance for thing %s", request.thing_id)
            return ActionResponse(id=request.id, status=ActionRequestStatus.FAILED, error=THING_NOT_FOUND)

        status = self.provider.request_action(instance, request)
        if status == ActionRequestStatus.COMPLETED:
            return None
        return ActionResponse(id=request.id, status=status)

    # --- platform calls on behalf of an instance ---

    def create_thing(self, instance_id: str, thing: dict) -> str:
        """Create a Thing with the stored instance token and persist its ID."""
        instance = self.database.get_instance(instance_id)
        thing_id = self.platform_client.create_thing(instance.token, thing)
        self.database.add_thing_id(instance_id, thing_id)
        self._logger.info("Created thing %s for instance %s", thing_id, instance_id)
        return thing_id

    def update_property(self, instance_id: str, thing_id: str, component_id: str, property_id: str, value: str) -> None:
        instance = self.database.get_instance(instance_id)
        self.platform_client.update_property(instance.token, thing_id, component_id, property_id, value)

    def update_action_status(self, instance_id: str, request_id: str, status: ActionRequestStatus, error: str = "") -> None:
        instance = self.database.get_instance(instance_id)
        self.platform_client.update_action_status(instance.token, request_id, status, error)

    # --- event relay ---

    def start_event_relay(self) -> None:
        if self._relay_thread is not None:
            return
        self._relay_thread = threading.Thread(target=self.run_event_relay, name="event-relay", daemon=True)
        self._relay_thread.start()

    def stop_event_relay(self) -> None:
        """Join the relay thread; the provider closes the channel that ends it."""
        if self._relay_thread is None:
            return
        self._relay_thread.join(timeout=_JOIN_TIMEOUT_SECONDS)
        if self._relay_thread.is_alive():
            self._logger.warning("Event relay did not stop within %.1fs", _JOIN_TIMEOUT_SECONDS)
        self._relay_thread = None

    def run_event_relay(self) -> None:
        self._logger.info("Event relay started")
        for event in self.provider.update_channel:
            try:
                self.handle_event(event)
            except Exception:
                ERROR_COUNT.labels(type="relay", location="handle_event").inc()
                self._logger.exception("Failed to relay update event")
        self._logger.info("Event relay stopped")

    def handle_event(self, event: UpdateEvent) -> None:
        property_error: Optional[Exception] = None

        if event.property_update is not None:
            update = event.property_update
            try:
                self.update_property(
                    update.instance_id, update.thing_id, update.component_id, update.property_id, update.value
                )
                EVENTS_RELAYED.labels(kind="property", outcome="ok").inc()
            except Exception as e:
                property_error = e
                EVENTS_RELAYED.labels(kind="property", outcome="error").inc()
                self._logger.error(
                    "Failed to update property %s/%s of thing %s: %s",
                    update.component_id, update.property_id, update.thing_id, e,
                )

        if event.action_status is not None:
            action_status: ActionStatusUpdate = event.action_status
            status, error = action_status.status, action_status.error
            if property_error is not None:
                status = ActionRequestStatus.FAILED
                error = f"failed to update property {property_error}"
                self._logger.error("Action %s failed: failed to update property", action_status.request_id)
            try:
                self.update_action_status(action_status.instance_id, action_status.request_id, status, error)
                EVENTS_RELAYED.labels(kind="action", outcome="ok").inc()
            except Exception as e:
                EVENTS_RELAYED.labels(kind="action", outcome="error").inc()
                self._logger.error("Failed to update status of action %s: %s", action_status.request_id, e)
