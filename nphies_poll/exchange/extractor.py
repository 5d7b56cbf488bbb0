"""
Message extraction from poll response bundles.

A poll response is a FHIR Bundle whose entries are either nested message
bundles (each with its own MessageHeader and payload) or payload
resources placed directly at the top level. Both are flattened into a
list of `RawMessage`.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from nphies_poll.errors import MalformedBundleError

PAYLOAD_RESOURCE_TYPES = frozenset(
    {
        "ClaimResponse",
        "CommunicationRequest",
        "Communication",
        "PaymentReconciliation",
        "PaymentNotice",
        "Task",
    }
)


class RawMessage(BaseModel):
    """One message taken out of a response bundle, before classification."""

    model_config = ConfigDict(frozen=True)

    resource_type: str
    payload: Dict[str, Any]
    message_header_id: Optional[str] = None
    # Left untyped: classification decides whether the value is usable.
    response_identifier: Any = None
    event_code: Optional[str] = None
    message_bundle: Optional[Dict[str, Any]] = None


def _load(response_bundle: Union[str, bytes, Dict[str, Any], None]) -> Dict[str, Any]:
    if isinstance(response_bundle, (str, bytes, bytearray)):
        try:
            response_bundle = json.loads(response_bundle)
        except (ValueError, UnicodeDecodeError) as exc:
            raise MalformedBundleError(f"response is not valid JSON: {exc}", raw=response_bundle)

    if not isinstance(response_bundle, dict):
        raise MalformedBundleError("response is not a JSON object", raw=response_bundle)
    if response_bundle.get("resourceType") != "Bundle":
        raise MalformedBundleError(
            f"expected a Bundle, got {response_bundle.get('resourceType')!r}", raw=response_bundle
        )
    return response_bundle


def _resources(bundle: Dict[str, Any], raw: Any) -> List[Dict[str, Any]]:
    entries = bundle.get("entry")
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise MalformedBundleError("Bundle.entry is not a list", raw=raw)

    resources = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or not isinstance(entry.get("resource"), dict):
            raise MalformedBundleError(f"Bundle.entry[{index}] has no resource object", raw=raw)
        resources.append(entry)
    return resources


def event_code_of(header: Optional[Dict[str, Any]]) -> Optional[str]:
    """Event code from `eventCoding.code` or `event.coding[0].code`."""
    if not header:
        return None
    coding = header.get("eventCoding")
    if isinstance(coding, dict) and coding.get("code"):
        return coding["code"]
    event = header.get("event")
    if isinstance(event, dict):
        codings = event.get("coding") or []
        if codings and isinstance(codings[0], dict):
            return codings[0].get("code")
    return None


def _find_payload(entries: List[Dict[str, Any]], header: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The MessageHeader focus if it resolves, otherwise the first payload-like resource."""
    if header:
        for focus in header.get("focus") or []:
            reference = focus.get("reference") if isinstance(focus, dict) else None
            if not reference:
                continue
            for entry in entries:
                resource = entry["resource"]
                local = f"{resource.get('resourceType')}/{resource.get('id')}"
                if entry.get("fullUrl") == reference or reference.endswith(local):
                    return resource

    for entry in entries:
        if entry["resource"].get("resourceType") in PAYLOAD_RESOURCE_TYPES:
            return entry["resource"]
    for entry in entries:
        if entry["resource"].get("resourceType") != "MessageHeader":
            return entry["resource"]
    return None


def _from_message_bundle(message_bundle: Dict[str, Any], raw: Any) -> RawMessage:
    entries = _resources(message_bundle, raw)
    header = next(
        (e["resource"] for e in entries if e["resource"].get("resourceType") == "MessageHeader"),
        None,
    )
    payload = _find_payload(entries, header)
    response = (header or {}).get("response")

    return RawMessage(
        resource_type=(payload or {}).get("resourceType") or "unknown",
        payload=payload or {},
        message_header_id=(header or {}).get("id"),
        response_identifier=response.get("identifier") if isinstance(response, dict) else None,
        event_code=event_code_of(header),
        message_bundle=message_bundle,
    )


def extract(response_bundle: Union[str, bytes, Dict[str, Any], None]) -> List[RawMessage]:
    """
    Flatten a poll response into discrete messages.

    Args:
        response_bundle: Parsed response bundle, or its raw JSON text

    Returns:
        Messages in bundle order (empty when the bundle has no entries)

    Raises:
        MalformedBundleError: If the response cannot be read as a Bundle
            whose entries each carry a resource
    """
    bundle = _load(response_bundle)
    messages: List[RawMessage] = []

    for entry in _resources(bundle, response_bundle):
        resource = entry["resource"]
        resource_type = resource.get("resourceType")

        if resource_type == "Bundle":
            if resource.get("type") == "message":
                messages.append(_from_message_bundle(resource, response_bundle))
        elif resource_type in PAYLOAD_RESOURCE_TYPES:
            messages.append(
                RawMessage(
                    resource_type=resource_type,
                    payload=resource,
                    message_bundle={"resourceType": "Bundle", "type": "message", "entry": [entry]},
                )
            )

    return messages
