"""
Tests for `services/connector_service.py`.

The service runs against a real SQLite file and a real `GiphyProvider` (with the mock GIF
client); only the platform client is a MagicMock, so the tests can assert which platform calls
are made and with which instance token.
"""

import threading
from unittest.mock import MagicMock, call

import pytest

from gif_api.mock_client import MockGifClient
from provider_api.giphy_provider import GiphyProvider
from services.connector_service import THING_NOT_FOUND, ConnectorService
from services.database import Database
from shared.errors import (
    ActionNotSupportedError,
    ActionQueueFullError,
    InstallationNotFoundError,
    InstanceNotFoundError,
    NotFoundError,
    PlatformClientError,
)
from shared.models import (
    ActionRequest,
    ActionRequestStatus,
    ActionStatusUpdate,
    Configuration,
    Installation,
    InstallationRequest,
    InstantiationRequest,
    PropertyUpdate,
    UpdateEvent,
)


@pytest.fixture
def database(tmp_path):
    db = Database(str(tmp_path / "connector.db"))
    db.migrate()
    return db


@pytest.fixture
def platform_client():
    client = MagicMock()
    client.create_thing.return_value = "thing-1"
    return client


@pytest.fixture
def provider():
    return GiphyProvider(MockGifClient(), action_queue_capacity=2, event_channel_capacity=10)


@pytest.fixture
def service(database, platform_client, provider):
    return ConnectorService(database, platform_client, provider)


def install(service, installation_id="inst-1", api_key="key-1"):
    service.add_installation(InstallationRequest(
        id=installation_id,
        token="installation-token",
        configuration=[Configuration(id="giphy_api_key", value=api_key)],
    ))


def instantiate(service, instance_id="i-1", installation_id="inst-1"):
    service.add_instance(InstantiationRequest(id=instance_id, installationId=installation_id, token="instance-token"))


def action(thing_id="thing-1", action_id="search", keyword="cats", request_id="a-1"):
    return ActionRequest(
        id=request_id, thingId=thing_id, componentId="search", actionId=action_id, parameters={"keyword": keyword}
    )


def test_add_installation_persists_then_registers(service, database, provider):
    assert service.add_installation(InstallationRequest(id="inst-1", token="t")) is None

    assert [i.id for i in database.get_installations()] == ["inst-1"]
    provider.registry.apply_pending()
    assert provider.registry.get_installation("inst-1") is not None


def test_add_instance_creates_thing_with_instance_token(service, database, platform_client, provider):
    install(service)
    instantiate(service)

    token, thing = platform_client.create_thing.call_args[0]
    assert token == "instance-token"
    assert thing["name"] == "Giphy"
    assert database.get_thing_ids("i-1") == ["thing-1"]
    provider.registry.apply_pending()
    assert provider.registry.get_instance("i-1").thing_ids == ["thing-1"]


def test_add_instance_thing_creation_failure_propagates(service, platform_client, provider):
    platform_client.create_thing.side_effect = PlatformClientError("POST /things returned HTTP 500")
    with pytest.raises(PlatformClientError):
        instantiate(service)
    provider.registry.apply_pending()
    assert provider.registry.instances() == []


def test_failed_thing_creation_rolls_back_instance_so_retry_succeeds(service, database, platform_client, provider):
    install(service)
    platform_client.create_thing.side_effect = [PlatformClientError("POST /things returned HTTP 502"), "thing-1"]

    with pytest.raises(PlatformClientError):
        instantiate(service)
    assert database.get_instances() == []

    instantiate(service)

    assert [i.id for i in database.get_instances()] == ["i-1"]
    assert database.get_thing_ids("i-1") == ["thing-1"]
    provider.registry.apply_pending()
    assert provider.registry.get_instance("i-1").thing_ids == ["thing-1"]


def test_init_registers_persisted_state(database, platform_client, provider):
    first = ConnectorService(database, platform_client, GiphyProvider(MockGifClient()))
    install(first)
    instantiate(first)

    ConnectorService(database, platform_client, provider).init()
    provider.registry.apply_pending()

    assert [i.id for i in provider.registry.installations()] == ["inst-1"]
    assert [i.id for i in provider.registry.instances()] == ["i-1"]


def test_remove_installation_deletes_from_both(service, database, provider):
    install(service)
    provider.registry.apply_pending()

    service.remove_installation("inst-1")
    provider.registry.apply_pending()

    assert database.get_installations() == []
    assert provider.registry.get_installation("inst-1") is None


def test_remove_unregistered_installation_still_deletes_from_database(service, database):
    install(service)
    # Not yet applied: provider removal fails, database removal proceeds
    service.remove_installation("inst-1")
    assert database.get_installations() == []


def test_remove_unknown_installation_raises(service):
    with pytest.raises(InstallationNotFoundError):
        service.remove_installation("missing")


def test_remove_unknown_instance_raises(service):
    with pytest.raises(InstanceNotFoundError):
        service.remove_instance("missing")


def test_remove_instance(service, database, provider):
    install(service)
    instantiate(service)
    provider.registry.apply_pending()

    service.remove_instance("i-1")
    provider.registry.apply_pending()

    assert database.get_instances() == []
    assert provider.registry.instances() == []


def test_perform_action_unknown_thing_fails(service):
    response = service.perform_action(action(thing_id="nope"))
    assert response.status == ActionRequestStatus.FAILED
    assert response.error == THING_NOT_FOUND
    assert response.id == "a-1"


def test_perform_action_pending(service, provider):
    install(service)
    instantiate(service)

    response = service.perform_action(action())

    assert response.status == ActionRequestStatus.PENDING
    assert response.id == "a-1"
    assert provider.action_queue.qsize() == 1


def test_perform_action_completed_returns_none(service):
    install(service)
    instantiate(service)
    service.provider = MagicMock()
    service.provider.request_action.return_value = ActionRequestStatus.COMPLETED

    assert service.perform_action(action()) is None


def test_perform_action_propagates_provider_rejections(service):
    install(service)
    instantiate(service)

    with pytest.raises(ActionNotSupportedError):
        service.perform_action(action(action_id="shuffle"))

    service.perform_action(action(request_id="a-1"))
    service.perform_action(action(request_id="a-2"))
    with pytest.raises(ActionQueueFullError):
        service.perform_action(action(request_id="a-3"))


def test_handle_event_applies_property_before_status(service, platform_client):
    install(service)
    instantiate(service)
    platform_client.reset_mock()

    service.handle_event(UpdateEvent(
        property_update=PropertyUpdate("i-1", "thing-1", "search", "value", "https://giphy.com/gifs/x"),
        action_status=ActionStatusUpdate("i-1", "a-1", ActionRequestStatus.COMPLETED),
    ))

    assert platform_client.method_calls == [
        call.update_property("instance-token", "thing-1", "search", "value", "https://giphy.com/gifs/x"),
        call.update_action_status("instance-token", "a-1", ActionRequestStatus.COMPLETED, ""),
    ]


def test_handle_event_property_failure_fails_action(service, platform_client):
    install(service)
    instantiate(service)
    platform_client.update_property.side_effect = PlatformClientError("HTTP 500")

    service.handle_event(UpdateEvent(
        property_update=PropertyUpdate("i-1", "thing-1", "search", "value", "https://giphy.com/gifs/x"),
        action_status=ActionStatusUpdate("i-1", "a-1", ActionRequestStatus.COMPLETED),
    ))

    platform_client.update_action_status.assert_called_once_with(
        "instance-token", "a-1", ActionRequestStatus.FAILED, "failed to update property HTTP 500"
    )


def test_relay_survives_failing_events(service, platform_client, provider):
    install(service)
    instantiate(service)
    platform_client.update_property.side_effect = [PlatformClientError("HTTP 502"), None]

    channel = provider.update_channel
    channel.publish(UpdateEvent(property_update=PropertyUpdate("i-1", "thing-1", "random", "value", "u1")))
    channel.publish(UpdateEvent(property_update=PropertyUpdate("unknown", "thing-1", "random", "value", "u2")))
    channel.publish(UpdateEvent(property_update=PropertyUpdate("i-1", "thing-1", "random", "value", "u3")))
    channel.close()

    service.run_event_relay()

    values = [c.args[4] for c in platform_client.update_property.call_args_list]
    assert values == ["u1", "u3"]


def test_end_to_end_search_reaches_platform(service, platform_client, provider):
    install(service)
    instantiate(service)
    reported = threading.Event()
    platform_client.update_action_status.side_effect = lambda *args, **kwargs: reported.set()
    service.start_event_relay()
    provider.start()
    try:
        assert service.perform_action(action(keyword="dogs")).status == ActionRequestStatus.PENDING
        assert reported.wait(timeout=5)
    finally:
        provider.stop()
        service.stop_event_relay()

    platform_client.update_action_status.assert_any_call("instance-token", "a-1", ActionRequestStatus.COMPLETED, "")


def test_registry_removal_survives_failing_database_delete(service, provider):
    # Known to the provider only, so the database delete fails
    provider.register_installations(Installation(id="inst-1", token="t"))
    provider.registry.apply_pending()

    with pytest.raises(NotFoundError):
        service.remove_installation("inst-1")

    provider.registry.apply_pending()
    assert provider.registry.get_installation("inst-1") is None
