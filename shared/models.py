"""
shared/models.py

Common data models used across the connector.

Two kinds of models live here:

1. Protocol messages exchanged with the Things platform (installation, instantiation and
   action callbacks). These are Pydantic models so the callback handler can validate request
   bodies and serialize responses with the exact camelCase keys the platform expects.
2. Domain records owned by the connector (installations, instances, pending actions and
   update events). These are plain dataclasses: they never cross the HTTP boundary as-is and
   are passed between the registry, the provider and the relay.

Secrets (installation and instance tokens) are part of the records because the connector
needs them to talk back to the platform; the `__repr__` of each record masks them so they
can be logged safely.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from shared.utils import mask_secret


class ActionRequestStatus(str, Enum):
    """
    Status of an action request as understood by the platform.

    PENDING means the connector accepted the action and will report the final status later via
    an action status update. COMPLETED and FAILED are terminal.
    """
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class InstallationState(IntEnum):
    INITIALIZED = 1
    COMPLETE = 2
    ONGOING = 3
    FAILED = 4


class InstantiationState(IntEnum):
    INITIALIZED = 1
    COMPLETE = 2
    ONGOING = 3
    FAILED = 4


class StepType(IntEnum):
    """Kinds of further installation/instantiation steps shown to the user by the platform."""
    TEXT = 1
    MARKDOWN = 2
    REDIRECT = 3


# --- Protocol messages ---

class Configuration(BaseModel):
    """A single configuration key/value pair supplied at installation or instantiation time."""
    id: str
    value: str


def unique_configuration_ids(configuration: List[Configuration]) -> List[Configuration]:
    seen = set()
    for entry in configuration:
        if entry.id in seen:
            raise ValueError(f"duplicate configuration id {entry.id!r}")
        seen.add(entry.id)
    return configuration


class InstallationRequest(BaseModel):
    """Body of `POST /installations` sent by the platform when the connector is installed."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    token: str
    state: Optional[InstallationState] = None
    configuration: List[Configuration] = Field(default_factory=list)

    @field_validator("configuration")
    @classmethod
    def configuration_ids_are_unique(cls, value: List[Configuration]) -> List[Configuration]:
        return unique_configuration_ids(value)


class InstantiationRequest(BaseModel):
    """
    Body of `POST /instantiations` sent by the platform when a user activates the connector.

    The installation reference is accepted both as `installationId` and `installation_id`;
    the platform has used both spellings.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    installation_id: str = Field(
        ...,
        validation_alias=AliasChoices("installationId", "installation_id"),
        serialization_alias="installationId",
    )
    token: str
    state: Optional[InstantiationState] = None
    configuration: List[Configuration] = Field(default_factory=list)

    @field_validator("configuration")
    @classmethod
    def configuration_ids_are_unique(cls, value: List[Configuration]) -> List[Configuration]:
        return unique_configuration_ids(value)


class Step(BaseModel):
    type: StepType
    content: str


class InstallationResponse(BaseModel):
    """Optional response to an installation request asking the platform for further steps."""
    model_config = ConfigDict(populate_by_name=True)

    details: Optional[Dict[str, Any]] = None
    further_step: Optional[Step] = Field(default=None, alias="furtherStep")


class InstantiationResponse(BaseModel):
    """Optional response to an instantiation request asking the platform for further steps."""
    model_config = ConfigDict(populate_by_name=True)

    details: Optional[Dict[str, Any]] = None
    further_step: Optional[Step] = Field(default=None, alias="furtherStep")


class ActionRequest(BaseModel):
    """Body of `POST /actions`: the platform asks a thing component to execute an action."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    thing_id: str = Field(..., alias="thingId")
    component_id: str = Field("", alias="componentId")
    action_id: str = Field(..., alias="actionId")
    status: Optional[ActionRequestStatus] = None
    parameters: Dict[str, str] = Field(default_factory=dict)


class ActionResponse(BaseModel):
    """Status report for an action request, returned synchronously or via status updates."""
    id: str = ""
    status: ActionRequestStatus
    error: str = ""


# --- Domain records ---

@dataclass
class Installation:
    """
    A connector installation within one platform application.

    The configuration carries installation-wide settings such as the Giphy API key. Once
    registered with the provider an installation is treated as immutable.
    """
    id: str
    token: str
    configuration: List[Configuration] = field(default_factory=list)

    def get_config(self, config_id: str) -> Optional[Configuration]:
        """
        Return the configuration entry with the given id, or None if the installation has none.

        Args:
            config_id (str): Configuration key, e.g. "giphy_api_key".

        Returns:
            Optional[Configuration]: The matching entry; lookups never mutate the installation.
        """
        for entry in self.configuration:
            if entry.id == config_id:
                return entry
        return None

    def __repr__(self) -> str:
        return (
            f"Installation(id={self.id!r}, token={mask_secret(self.token)!r}, "
            f"configuration={[c.id for c in self.configuration]!r})"
        )


@dataclass
class Instance:
    """
    A per-user activation of the connector, mapped to one or more platform things.

    `thing_ids` is filled once per thing template while the instance is created and is
    read-only afterwards.
    """
    id: str
    installation_id: str
    token: str
    thing_ids: List[str] = field(default_factory=list)
    configuration: List[Configuration] = field(default_factory=list)

    def get_config(self, config_id: str) -> Optional[Configuration]:
        for entry in self.configuration:
            if entry.id == config_id:
                return entry
        return None

    def __repr__(self) -> str:
        return (
            f"Instance(id={self.id!r}, installation_id={self.installation_id!r}, "
            f"token={mask_secret(self.token)!r}, thing_ids={self.thing_ids!r})"
        )


@dataclass
class PendingAction:
    """An accepted action request together with the instance snapshot taken at enqueue time."""
    request: ActionRequest
    instance: Instance

    @property
    def id(self) -> str:
        return self.request.id

    @property
    def action_id(self) -> str:
        return self.request.action_id

    @property
    def parameters(self) -> Dict[str, str]:
        return self.request.parameters


@dataclass(frozen=True)
class PropertyUpdate:
    instance_id: str
    thing_id: str
    component_id: str
    property_id: str
    value: str


@dataclass(frozen=True)
class ActionStatusUpdate:
    instance_id: str
    request_id: str
    status: ActionRequestStatus
    error: str = ""


@dataclass(frozen=True)
class UpdateEvent:
    """
    Unit of work carried by the event channel from the provider to the relay.

    An event holds a property update, an action status update, or both. When both are set the
    relay applies the property first and then reports the status, so a completed action is never
    reported before its result is visible on the thing.
    """
    property_update: Optional[PropertyUpdate] = None
    action_status: Optional[ActionStatusUpdate] = None

    def __post_init__(self):
        if self.property_update is None and self.action_status is None:
            raise ValueError("an update event needs a property update or an action status")


# --- Thing model identifiers ---

RANDOM_COMPONENT_ID = "random"
RANDOM_PROPERTY_ID = "value"
SEARCH_COMPONENT_ID = "search"
SEARCH_PROPERTY_ID = "value"
SEARCH_ACTION_ID = "search"
SEARCH_ACTION_PARAMETER_ID = "keyword"

GIPHY_API_KEY_CONFIG = "giphy_api_key"
