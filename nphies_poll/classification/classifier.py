"""
Message classification.

Labels each extracted message as solicited, unsolicited or unknown from
its correlation identifier, and computes the fingerprint that keys
idempotent reconciliation. Everything here is pure: no I/O.
"""

import hashlib
import json
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from nphies_poll.db.models.enums import MessageType
from nphies_poll.exchange.extractor import RawMessage

# FHIR `id` grammar; identifiers may also arrive as `urn:uuid:<id>`.
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9\-.]{1,64}$")
_URN_PREFIXES = ("urn:uuid:", "urn:oid:")
_MAX_STORED_IDENTIFIER = 255


class ClassifiedMessage(BaseModel):
    """A raw message with its classification and fingerprint."""

    model_config = ConfigDict(frozen=True)

    raw: RawMessage
    message_type: MessageType
    response_identifier: Optional[str] = None
    fingerprint: str

    @property
    def resource_type(self) -> str:
        return self.raw.resource_type

    @property
    def event_code(self) -> Optional[str]:
        return self.raw.event_code

    @property
    def payload(self) -> dict:
        return self.raw.payload

    @property
    def is_solicited(self) -> bool:
        return self.message_type == MessageType.SOLICITED


def normalize_identifier(value: Any) -> Optional[str]:
    """
    Return the usable correlation id, or None when it is structurally invalid.

    Args:
        value: `MessageHeader.response.identifier` as received

    Returns:
        The identifier without any URN prefix, or None
    """
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    for prefix in _URN_PREFIXES:
        if candidate.lower().startswith(prefix):
            candidate = candidate[len(prefix):]
            break
    return candidate if _IDENTIFIER_RE.match(candidate) else None


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _display(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text[:_MAX_STORED_IDENTIFIER]


def fingerprint(resource_type: str, response_identifier: Optional[str], payload: dict) -> str:
    """
    Stable hash of a message's business content.

    `meta` is left out because the exchange may restamp it on redelivery.
    """
    content = {key: value for key, value in (payload or {}).items() if key != "meta"}
    canonical = json.dumps(
        [resource_type, response_identifier or "", content],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def classify(raw: RawMessage) -> ClassifiedMessage:
    """
    Classify a message by its correlation identifier.

    - valid identifier: solicited
    - no identifier: unsolicited
    - identifier present but invalid: unknown (kept, truncated, for triage)
    """
    value = raw.response_identifier

    if _is_absent(value):
        message_type = MessageType.UNSOLICITED
        identifier = None
    else:
        identifier = normalize_identifier(value)
        if identifier is not None:
            message_type = MessageType.SOLICITED
        else:
            message_type = MessageType.UNKNOWN
            identifier = _display(value)

    return ClassifiedMessage(
        raw=raw,
        message_type=message_type,
        response_identifier=identifier,
        fingerprint=fingerprint(raw.resource_type, identifier, raw.payload),
    )
