"""
Resource-specific writers that apply a matched message to a business record.

Each applier receives the open unit of work, the classified message and
its match outcome, and returns which record it touched and whether it
created it. Appliers never commit; the reconciler owns the transaction.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Tuple

from nphies_poll.classification.classifier import ClassifiedMessage
from nphies_poll.db.models.enums import RecordTable
from nphies_poll.db.unit_of_work import UnitOfWork
from nphies_poll.errors import InvalidRecordStateError, UnsupportedReconciliationError
from nphies_poll.matching.identifiers import own_identifiers, reference_values, request_identifiers
from nphies_poll.matching.models import MatchOutcome

logger = logging.getLogger(__name__)

CLOSED_STATUSES = frozenset({"cancelled"})
ADJUDICATION_EXTENSION = "extension-adjudication-outcome"


class AppliedChange(NamedTuple):
    record_id: int
    created: bool


Applier = Callable[[UnitOfWork, ClassifiedMessage, MatchOutcome], Awaitable[AppliedChange]]


# ---------------------------------------------------------------------------
# Payload readers
# ---------------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _first_code(concept: Any) -> Optional[str]:
    if isinstance(concept, dict):
        codings = concept.get("coding") or []
        if codings and isinstance(codings[0], dict):
            return codings[0].get("code")
    return None


def _amount(value: Any) -> Optional[Decimal]:
    if isinstance(value, dict):
        value = value.get("value")
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def adjudication_outcome(payload: Dict[str, Any]) -> Optional[str]:
    """Code of the adjudication-outcome extension, if present."""
    for extension in payload.get("extension") or []:
        if isinstance(extension, dict) and ADJUDICATION_EXTENSION in str(extension.get("url", "")):
            return _first_code(extension.get("valueCodeableConcept"))
    return None


def approved_amount(payload: Dict[str, Any]) -> Optional[Decimal]:
    """`benefit` total, falling back to `eligible`."""
    totals = {
        _first_code(total.get("category")): total.get("amount")
        for total in payload.get("total") or []
        if isinstance(total, dict)
    }
    return _amount(totals.get("benefit")) or _amount(totals.get("eligible"))


def derive_authorization_status(payload: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """
    Local status and adjudication outcome for an authorization response.

    Returns:
        Tuple of (status, adjudication outcome)
    """
    outcome = payload.get("outcome")
    adjudication = adjudication_outcome(payload)

    if outcome == "complete":
        disposition = (payload.get("disposition") or "").lower()
        if "denied" in disposition or "reject" in disposition:
            return "denied", adjudication or "rejected"
        return "approved", adjudication or "approved"
    if outcome == "partial":
        return "partial", adjudication or "partial"
    if outcome == "queued":
        return "queued", adjudication
    if outcome == "error":
        return "error", adjudication
    return "pending", adjudication


def derive_claim_status(payload: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """Local status and adjudication outcome for a claim response."""
    outcome = payload.get("outcome")
    adjudication = adjudication_outcome(payload)

    if outcome == "queued":
        status = "queued"
    elif outcome == "error":
        status = "error"
    elif adjudication == "approved":
        status = "approved"
    elif adjudication == "rejected":
        status = "denied"
    elif adjudication == "partial" or outcome == "partial":
        status = "partial"
    elif outcome == "complete":
        status = "approved"
    else:
        status = "pending"
    return status, adjudication


def _period(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    period = payload.get("preAuthPeriod") or {}
    return period.get("start"), period.get("end")


async def _open_record(uow: UnitOfWork, table: RecordTable, record_id: int):
    record = await uow.records(table).get_by_id(record_id)
    if record is None:
        raise InvalidRecordStateError(f"{table.value}#{record_id} no longer exists")
    if getattr(record, "status", None) in CLOSED_STATUSES:
        raise InvalidRecordStateError(
            f"{table.value}#{record_id} is {record.status} and does not accept updates"
        )
    return record


def _keep(new: Any, current: Any) -> Any:
    """Keep the stored value when the payload does not carry one."""
    return current if new is None else new


# ---------------------------------------------------------------------------
# Appliers
# ---------------------------------------------------------------------------

async def claim_response_to_prior_authorization(uow, message, outcome) -> AppliedChange:
    record = await _open_record(uow, RecordTable.PRIOR_AUTHORIZATIONS, outcome.record_id)
    payload = message.payload
    status, adjudication = derive_authorization_status(payload)
    start, end = _period(payload)

    await uow.prior_authorizations.update(
        record.id,
        status=status,
        outcome=payload.get("outcome"),
        disposition=payload.get("disposition"),
        adjudication_outcome=adjudication,
        pre_auth_ref=_keep(payload.get("preAuthRef"), record.pre_auth_ref),
        pre_auth_period_start=_keep(start, record.pre_auth_period_start),
        pre_auth_period_end=_keep(end, record.pre_auth_period_end),
        approved_amount=_keep(approved_amount(payload), record.approved_amount),
        response_bundle=message.raw.message_bundle or payload,
        response_date=_now(),
    )
    logger.info(f"[RECONCILE] prior_authorizations#{record.id} -> {status}")
    return AppliedChange(record.id, False)


async def claim_response_to_claim_submission(uow, message, outcome) -> AppliedChange:
    record = await _open_record(uow, RecordTable.CLAIM_SUBMISSIONS, outcome.record_id)
    payload = message.payload
    status, adjudication = derive_claim_status(payload)
    identifiers = own_identifiers(payload)

    await uow.claim_submissions.update(
        record.id,
        status=status,
        outcome=payload.get("outcome"),
        disposition=payload.get("disposition"),
        adjudication_outcome=adjudication,
        nphies_claim_id=_keep(identifiers[0] if identifiers else None, record.nphies_claim_id),
        approved_amount=_keep(approved_amount(payload), record.approved_amount),
        response_bundle=message.raw.message_bundle or payload,
        response_date=_now(),
    )
    logger.info(f"[RECONCILE] claim_submissions#{record.id} -> {status}")
    return AppliedChange(record.id, False)


async def claim_response_to_advanced_authorization(uow, message, outcome) -> AppliedChange:
    """Update the matched advanced authorization, or create it for a payer-initiated message."""
    payload = message.payload
    identifiers = payload.get("identifier") or []
    first = identifiers[0] if identifiers and isinstance(identifiers[0], dict) else {}
    identifier_value = first.get("value")
    if not identifier_value:
        raise InvalidRecordStateError("advanced authorization has no identifier")

    status, adjudication = derive_authorization_status(payload)
    start, end = _period(payload)
    patient = reference_values(payload.get("patient"))
    insurer = reference_values(payload.get("insurer"))
    fields = dict(
        identifier_system=first.get("system"),
        nphies_response_id=payload.get("id"),
        patient_identifier=patient[0] if patient else None,
        insurer_identifier=insurer[0] if insurer else None,
        status=status,
        outcome=payload.get("outcome"),
        adjudication_outcome=adjudication,
        pre_auth_ref=payload.get("preAuthRef"),
        pre_auth_period_start=start,
        pre_auth_period_end=end,
        response_bundle=message.raw.message_bundle or payload,
    )

    repo = uow.advanced_authorizations
    record = (
        await repo.get_by_id(outcome.record_id)
        if outcome.record_id is not None
        else await repo.get_by_identifier_value(str(identifier_value))
    )
    if record is not None:
        await repo.update(record.id, **fields)
        logger.info(f"[RECONCILE] advanced_authorizations#{record.id} updated")
        return AppliedChange(record.id, False)

    created = await repo.create(identifier_value=str(identifier_value), **fields)
    logger.info(f"[RECONCILE] advanced_authorizations#{created.id} created")
    return AppliedChange(created.id, True)


async def communication_to_parent(uow, message, outcome) -> AppliedChange:
    """Store a Communication(Request) linked to the record it is about."""
    table = outcome.table
    parent = await _open_record(uow, table, outcome.record_id)
    payload = message.payload

    about = request_identifiers(message.resource_type, payload)
    about_refs = [ref.get("reference") for ref in payload.get("about") or [] if isinstance(ref, dict)]
    contents = payload.get("payload") or []
    text = next(
        (c.get("contentString") for c in contents if isinstance(c, dict) and c.get("contentString")),
        None,
    )
    sender = reference_values(payload.get("sender"))
    categories = payload.get("category") or []

    fields = dict(
        resource_type=message.resource_type,
        parent_table=table.value,
        parent_record_id=parent.id,
        about_identifier=about[0] if about else None,
        about_reference=next((r for r in about_refs if r), None),
        status=payload.get("status"),
        category=_first_code(categories[0]) if categories else None,
        priority=payload.get("priority"),
        payload_text=text,
        sender_identifier=sender[0] if sender else None,
        resource_data=payload,
    )

    communication_id = str(payload.get("id") or message.fingerprint)
    existing = await uow.communications.get_by_communication_id(communication_id)
    if existing is not None:
        await uow.communications.update(existing.id, **fields)
    else:
        await uow.communications.create(communication_id=communication_id, **fields)

    logger.info(f"[RECONCILE] {message.resource_type} {communication_id} linked to {table.value}#{parent.id}")
    return AppliedChange(parent.id, False)


def _payment_amount(message: ClassifiedMessage, record) -> Optional[Decimal]:
    payload = message.payload
    if message.resource_type == "PaymentNotice":
        return _amount(payload.get("amount"))

    own = {record.claim_number, record.nphies_claim_id, record.nphies_request_id} - {None}
    for detail in payload.get("detail") or []:
        if isinstance(detail, dict) and own.intersection(reference_values(detail.get("request"))):
            return _amount(detail.get("amount"))
    return _amount(payload.get("paymentAmount"))


async def payment_to_claim_submission(uow, message, outcome) -> AppliedChange:
    """Record a PaymentNotice / PaymentReconciliation on the paid claim."""
    record = await _open_record(uow, RecordTable.CLAIM_SUBMISSIONS, outcome.record_id)
    payload = message.payload

    reference = payload.get("paymentIdentifier") or payload.get("identifier") or {}
    if isinstance(reference, list):
        reference = reference[0] if reference else {}
    if message.resource_type == "PaymentNotice":
        payment_status = _first_code(payload.get("paymentStatus")) or "paid"
    else:
        payment_status = payload.get("outcome") or "paid"

    await uow.claim_submissions.update(
        record.id,
        paid_amount=_keep(_payment_amount(message, record), record.paid_amount),
        payment_reference=_keep(reference.get("value"), record.payment_reference),
        payment_date=_keep(payload.get("paymentDate"), record.payment_date),
        payment_status=payment_status,
    )
    logger.info(f"[RECONCILE] claim_submissions#{record.id} payment {payment_status}")
    return AppliedChange(record.id, False)


async def task_to_request(uow, message, outcome) -> AppliedChange:
    """A completed cancel Task closes the request; other tasks only stamp the response date."""
    record = await _open_record(uow, outcome.table, outcome.record_id)
    payload = message.payload
    fields: Dict[str, Any] = {"response_date": _now()}
    if payload.get("status") == "completed" and _first_code(payload.get("code")) == "cancel":
        fields["status"] = "cancelled"

    await uow.records(outcome.table).update(record.id, **fields)
    return AppliedChange(record.id, False)


APPLIERS: Dict[Tuple[str, RecordTable], Applier] = {
    ("ClaimResponse", RecordTable.PRIOR_AUTHORIZATIONS): claim_response_to_prior_authorization,
    ("ClaimResponse", RecordTable.CLAIM_SUBMISSIONS): claim_response_to_claim_submission,
    ("ClaimResponse", RecordTable.ADVANCED_AUTHORIZATIONS): claim_response_to_advanced_authorization,
    ("PaymentNotice", RecordTable.CLAIM_SUBMISSIONS): payment_to_claim_submission,
    ("PaymentReconciliation", RecordTable.CLAIM_SUBMISSIONS): payment_to_claim_submission,
    ("Task", RecordTable.PRIOR_AUTHORIZATIONS): task_to_request,
    ("Task", RecordTable.CLAIM_SUBMISSIONS): task_to_request,
}
for _resource in ("Communication", "CommunicationRequest"):
    for _table in (
        RecordTable.PRIOR_AUTHORIZATIONS,
        RecordTable.CLAIM_SUBMISSIONS,
        RecordTable.ADVANCED_AUTHORIZATIONS,
    ):
        APPLIERS[(_resource, _table)] = communication_to_parent


def get_applier(resource_type: str, table: RecordTable) -> Applier:
    """
    Look up the applier for a resource type / table pair.

    Raises:
        UnsupportedReconciliationError: If no applier handles the pair
    """
    try:
        return APPLIERS[(resource_type, RecordTable(table))]
    except KeyError:
        raise UnsupportedReconciliationError(
            f"no reconciliation for {resource_type} against {RecordTable(table).value}"
        ) from None
