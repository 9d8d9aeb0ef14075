"""
Thing templates: the Things created on the platform for each new instance.

The platform assigns the Thing ID when the Thing is created and stores everything else about
it, so the connector only keeps the returned IDs. Every Giphy instance gets one sensor Thing:

- component `random` (capability `core.MEASURE`) whose `value` property the polling loop
  refreshes with a random GIF URL,
- component `search` (capability `core.SEARCH`) whose `value` property is written by the
  `search` action.
"""

from typing import Any, Callable, Dict, List

from shared.models import (
    RANDOM_COMPONENT_ID,
    RANDOM_PROPERTY_ID,
    SEARCH_ACTION_ID,
    SEARCH_ACTION_PARAMETER_ID,
    SEARCH_COMPONENT_ID,
    SEARCH_PROPERTY_ID,
    InstantiationRequest,
)

VALUE_TYPE_STRING = "STRING"

ThingTemplates = Callable[[InstantiationRequest], List[Dict[str, Any]]]


def giphy_thing_templates(request: InstantiationRequest) -> List[Dict[str, Any]]:
    """Return the Thing documents to create for the instance described by `request`."""
    return [
        {
            "name": "Giphy",
            "manufacturer": "IoT connctd GmbH",
            "displayType": "core.SENSOR",
            "mainComponentId": RANDOM_COMPONENT_ID,
            "status": "AVAILABLE",
            "attributes": [],
            "components": [
                {
                    "id": RANDOM_COMPONENT_ID,
                    "name": "Giphy random component",
                    "componentType": "core.Sensor",
                    "capabilities": ["core.MEASURE"],
                    "properties": [
                        {
                            "id": RANDOM_PROPERTY_ID,
                            "name": "Giphy random property",
                            "value": "",
                            "type": VALUE_TYPE_STRING,
                        },
                    ],
                    "actions": [],
                },
                {
                    "id": SEARCH_COMPONENT_ID,
                    "name": "Giphy search",
                    "componentType": "core.Sensor",
                    "capabilities": ["core.SEARCH"],
                    "properties": [
                        {
                            "id": SEARCH_PROPERTY_ID,
                            "name": "Giphy search property",
                            "value": "",
                            "type": VALUE_TYPE_STRING,
                        },
                    ],
                    "actions": [
                        {
                            "id": SEARCH_ACTION_ID,
                            "name": "Giphy search action",
                            "parameters": [
                                {"name": SEARCH_ACTION_PARAMETER_ID, "type": VALUE_TYPE_STRING},
                            ],
                        },
                    ],
                },
            ],
        }
    ]
