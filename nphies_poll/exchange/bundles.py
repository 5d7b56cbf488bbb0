"""Construction of the outbound poll request bundle."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from nphies_poll.exchange.config import PollerConfig

BUNDLE_PROFILE = "http://nphies.sa/fhir/ksa/nphies-fs/StructureDefinition/bundle|1.0.0"
MESSAGE_HEADER_PROFILE = (
    "http://nphies.sa/fhir/ksa/nphies-fs/StructureDefinition/message-header|1.0.0"
)
MESSAGE_EVENTS_SYSTEM = "http://nphies.sa/terminology/CodeSystem/ksa-message-events"
PROVIDER_LICENSE_SYSTEM = "http://nphies.sa/license/provider-license"
NPHIES_LICENSE_SYSTEM = "http://nphies.sa/license/nphies-license"


def build_poll_request_bundle(config: PollerConfig) -> Dict[str, Any]:
    """
    Build a FHIR message Bundle asking the exchange for queued messages.

    The bundle carries a `poll` MessageHeader and a Parameters resource
    listing the requested message types and the maximum count.

    Args:
        config: Poller configuration (provider identity, message types, count)

    Returns:
        Poll request bundle as a JSON-compatible dict
    """
    header_id = str(uuid.uuid4())
    parameters_id = str(uuid.uuid4())

    parameters = [{"name": "message-type", "valueCode": code} for code in config.message_types]
    parameters.append({"name": "count", "valueInteger": config.message_count})

    return {
        "resourceType": "Bundle",
        "id": str(uuid.uuid4()),
        "meta": {"profile": [BUNDLE_PROFILE]},
        "type": "message",
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "entry": [
            {
                "fullUrl": f"urn:uuid:{header_id}",
                "resource": {
                    "resourceType": "MessageHeader",
                    "id": header_id,
                    "meta": {"profile": [MESSAGE_HEADER_PROFILE]},
                    "eventCoding": {"system": MESSAGE_EVENTS_SYSTEM, "code": "poll"},
                    "source": {"endpoint": config.provider_endpoint},
                    "destination": [
                        {
                            "endpoint": "http://nphies.sa",
                            "receiver": {
                                "type": "Organization",
                                "identifier": {"system": NPHIES_LICENSE_SYSTEM, "value": "nphies"},
                            },
                        }
                    ],
                    "sender": {
                        "type": "Organization",
                        "identifier": {
                            "system": PROVIDER_LICENSE_SYSTEM,
                            "value": config.provider_id,
                        },
                    },
                },
            },
            {
                "fullUrl": f"urn:uuid:{parameters_id}",
                "resource": {
                    "resourceType": "Parameters",
                    "id": parameters_id,
                    "parameter": parameters,
                },
            },
        ],
    }
