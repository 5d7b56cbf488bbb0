"""Pure helpers reading identifiers and counterparts out of FHIR payloads."""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, NamedTuple

from nphies_poll.db.models.enums import RecordTable

# Business tables a resource type can be about, in lookup order.
TARGET_TABLES: dict[str, tuple[RecordTable, ...]] = {
    "ClaimResponse": (RecordTable.PRIOR_AUTHORIZATIONS, RecordTable.CLAIM_SUBMISSIONS),
    "CommunicationRequest": (
        RecordTable.PRIOR_AUTHORIZATIONS,
        RecordTable.CLAIM_SUBMISSIONS,
        RecordTable.ADVANCED_AUTHORIZATIONS,
    ),
    "Communication": (
        RecordTable.PRIOR_AUTHORIZATIONS,
        RecordTable.CLAIM_SUBMISSIONS,
        RecordTable.ADVANCED_AUTHORIZATIONS,
    ),
    "PaymentNotice": (RecordTable.CLAIM_SUBMISSIONS,),
    "PaymentReconciliation": (RecordTable.CLAIM_SUBMISSIONS,),
    "Task": (RecordTable.PRIOR_AUTHORIZATIONS, RecordTable.CLAIM_SUBMISSIONS),
}

_PATIENT_FIELDS = ("patient", "subject", "beneficiary")
_PROVIDER_FIELDS = ("provider", "requestor", "payee", "recipient", "submitter")
_DATE_FIELDS = ("servicedDate", "paymentDate", "date", "created", "sent", "authoredOn")


class Counterparts(NamedTuple):
    patient: str | None
    provider: str | None
    on: date | None

    @property
    def complete(self) -> bool:
        return bool(self.patient and self.provider and self.on)


def reference_tail(reference: str | None) -> str | None:
    """'ClaimResponse/abc' -> 'abc', 'urn:uuid:abc' -> 'abc'."""
    if not reference or not isinstance(reference, str):
        return None
    tail = reference.rstrip("/").rsplit("/", 1)[-1]
    if tail.startswith("urn:uuid:"):
        tail = tail[len("urn:uuid:"):]
    return tail or None


def reference_values(reference: Any) -> list[str]:
    """Identifier value and reference tail of a FHIR Reference, in that order."""
    if not isinstance(reference, dict):
        return []
    values = []
    identifier = reference.get("identifier")
    if isinstance(identifier, dict) and identifier.get("value"):
        values.append(str(identifier["value"]))
    tail = reference_tail(reference.get("reference"))
    if tail:
        values.append(tail)
    return values


def _unique(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


def request_identifiers(resource_type: str, payload: dict) -> list[str]:
    """
    Identifiers of the local request a payload refers to.

    ClaimResponse / PaymentNotice: `request`; PaymentReconciliation:
    `detail[].request`; Communication(Request): `about[]` and `basedOn[]`;
    Task: `focus`.
    """
    if resource_type in ("ClaimResponse", "PaymentNotice"):
        return _unique(reference_values(payload.get("request")))
    if resource_type == "PaymentReconciliation":
        return _unique(
            value
            for detail in payload.get("detail") or []
            if isinstance(detail, dict)
            for value in reference_values(detail.get("request"))
        )
    if resource_type in ("Communication", "CommunicationRequest"):
        references = list(payload.get("about") or []) + list(payload.get("basedOn") or [])
        return _unique(value for ref in references for value in reference_values(ref))
    if resource_type == "Task":
        return _unique(reference_values(payload.get("focus")))
    return []


def own_identifiers(payload: dict) -> list[str]:
    """Values of the payload's own `identifier[]`."""
    identifiers = payload.get("identifier") or []
    if isinstance(identifiers, dict):
        identifiers = [identifiers]
    return _unique(
        str(item["value"]) for item in identifiers if isinstance(item, dict) and item.get("value")
    )


def is_advanced_authorization(payload: dict, marker: str = "advanced-authorization") -> bool:
    profiles = (payload.get("meta") or {}).get("profile") or []
    return any(marker in str(profile) for profile in profiles)


def _parse_date(value: Any) -> date | None:
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _first_reference_value(source: dict, fields: tuple[str, ...]) -> str | None:
    for name in fields:
        values = reference_values(source.get(name))
        if values:
            return values[0]
    return None


def _first_date(source: dict) -> date | None:
    for name in _DATE_FIELDS:
        parsed = _parse_date(source.get(name))
        if parsed:
            return parsed
    period = source.get("servicedPeriod")
    if isinstance(period, dict):
        return _parse_date(period.get("start"))
    return None


def counterparts(payload: dict) -> Counterparts:
    """Patient, provider and date of a payload, falling back to its first `detail`."""
    sources = [payload]
    details = payload.get("detail")
    if isinstance(details, list) and details and isinstance(details[0], dict):
        sources.append(details[0])

    patient = provider = None
    on = None
    for source in sources:
        patient = patient or _first_reference_value(source, _PATIENT_FIELDS)
        provider = provider or _first_reference_value(source, _PROVIDER_FIELDS)
        on = on or _first_date(source)
    return Counterparts(patient, provider, on)
