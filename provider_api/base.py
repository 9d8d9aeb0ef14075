"""
Provider interface between the connector service and the code that produces device data.

The connector service handles the platform protocol (callbacks, persistence, Thing creation)
and delegates everything device specific to a provider. The contract is intentionally small:

- the service registers and removes installations and instances as callbacks arrive,
- the service forwards action requests and receives a synchronous status,
- the provider publishes `UpdateEvent`s on its update channel, which the service drains and
  relays to the platform.

Registration and removal are cheap and never block on I/O: they only stage changes for the
provider's background workers. A provider is started once the service has loaded the persisted
state and stopped on application shutdown.
"""

from abc import ABC, abstractmethod

from core.event_channel import EventChannel
from shared.models import ActionRequest, ActionRequestStatus, Installation, Instance


class Provider(ABC):
    """
    Abstract provider as seen by the connector service.

    Implementations must be safe to call from request threads while their own background
    workers run.
    """

    @property
    @abstractmethod
    def update_channel(self) -> EventChannel:
        """Channel of `UpdateEvent`s; the connector service is its only consumer."""
        raise NotImplementedError

    @abstractmethod
    def register_installations(self, *installations: Installation) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_installation(self, installation_id: str) -> None:
        """
        Raises:
            NotFoundError: If the installation is not registered.
        """
        raise NotImplementedError

    @abstractmethod
    def register_instances(self, *instances: Instance) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_instance(self, instance_id: str) -> None:
        """
        Raises:
            NotFoundError: If the instance is not registered.
        """
        raise NotImplementedError

    @abstractmethod
    def request_action(self, instance: Instance, request: ActionRequest) -> ActionRequestStatus:
        """
        Accept or reject an action request without waiting for its execution.

        Returns:
            ActionRequestStatus: PENDING when the action was queued (the final status follows as
            an update event) or COMPLETED for actions executed synchronously.

        Raises:
            ConnectorError: When the action is rejected; the error's status becomes the HTTP
            status of the FAILED action response.
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def running(self) -> bool:
        """True while the background workers are alive."""
        raise NotImplementedError

    @abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        raise NotImplementedError
