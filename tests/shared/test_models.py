"""
Tests for the protocol messages in `shared/models.py`.
"""

import pytest
from pydantic import ValidationError

from shared.models import InstallationRequest, InstantiationRequest


def test_installation_configuration_ids_must_be_unique():
    with pytest.raises(ValidationError):
        InstallationRequest.model_validate({
            "id": "inst-1",
            "token": "t",
            "configuration": [{"id": "giphy_api_key", "value": "a"}, {"id": "giphy_api_key", "value": "b"}],
        })


def test_instantiation_configuration_ids_must_be_unique():
    with pytest.raises(ValidationError):
        InstantiationRequest.model_validate({
            "id": "i-1",
            "installationId": "inst-1",
            "token": "t",
            "configuration": [{"id": "tag", "value": "cats"}, {"id": "tag", "value": "dogs"}],
        })


def test_distinct_configuration_ids_are_kept_in_order():
    request = InstallationRequest.model_validate({
        "id": "inst-1",
        "token": "t",
        "configuration": [{"id": "giphy_api_key", "value": "a"}, {"id": "rating", "value": "g"}],
    })
    assert [c.id for c in request.configuration] == ["giphy_api_key", "rating"]
