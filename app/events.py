"""
Normalization of the three event sources into one StatusEvent.

Webhooks arrive in two shapes: the gateway's JSON document embedded as a
string under a ``payload`` field, or the same fields posted directly (JSON or
form encoded). Each shape is parsed into a tagged value first, then reduced to
a StatusEvent, so the reconciliation rule never looks at the wire shape.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from app.errors import MalformedEventError
from app.models import PENDING, TransactionPatch


@dataclass(frozen=True)
class EmbeddedDocument:
    document: str


@dataclass(frozen=True)
class DirectFields:
    fields: Dict[str, Any]


WebhookShape = Union[EmbeddedDocument, DirectFields]


@dataclass(frozen=True)
class StatusEvent:
    reference_number: str
    status: str
    amount: Optional[float] = None
    reason: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_patch(self) -> TransactionPatch:
        return TransactionPatch(
            status=self.status,
            raw_last_event=self.payload,
            amount=self.amount,
            reason=self.reason,
        )


def parse_webhook_body(body: Optional[Mapping[str, Any]]) -> WebhookShape:
    if not body:
        raise MalformedEventError("Unknown payload format")

    if body.get("payload"):
        return EmbeddedDocument(document=body["payload"])
    if body.get("referenceNumber"):
        return DirectFields(fields=dict(body))
    raise MalformedEventError("Unknown payload format")


def _decode_document(document: Any) -> Dict[str, Any]:
    if isinstance(document, dict):
        # JSON bodies sometimes carry the document already decoded.
        return document
    try:
        data = json.loads(document)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"Embedded payload is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedEventError("Embedded payload is not a JSON object")
    return data


def _coerce_amount(data: Mapping[str, Any]) -> Optional[float]:
    amount = data.get("amount")
    if amount is None:
        details = data.get("amountDetails")
        if isinstance(details, Mapping):
            amount = details.get("amount")
    if amount is None or amount == "":
        return None
    if isinstance(amount, bool):
        raise MalformedEventError(f"Invalid amount: {amount!r}")
    try:
        return float(amount)
    except (TypeError, ValueError):
        raise MalformedEventError(f"Invalid amount: {amount!r}")


def normalize(shape: WebhookShape) -> StatusEvent:
    if isinstance(shape, EmbeddedDocument):
        data = _decode_document(shape.document)
    else:
        data = shape.fields

    reference_number = data.get("referenceNumber")
    status = data.get("transactionStatus")
    if not reference_number or not isinstance(reference_number, str):
        raise MalformedEventError("Webhook event has no referenceNumber")
    if not status or not isinstance(status, str):
        raise MalformedEventError(f"Webhook event for {reference_number} has no transactionStatus")

    reason = data.get("reasonForPayment")
    return StatusEvent(
        reference_number=reference_number,
        status=status,
        amount=_coerce_amount(data),
        reason=str(reason) if reason is not None else None,
        payload=dict(data),
    )


def webhook_event(body: Optional[Mapping[str, Any]]) -> StatusEvent:
    return normalize(parse_webhook_body(body))


def creation_event(reference_number: str, amount: float, reason: str,
                   response: Optional[Dict[str, Any]] = None) -> StatusEvent:
    return StatusEvent(
        reference_number=reference_number,
        status=PENDING,
        amount=amount,
        reason=reason,
        payload=dict(response or {}),
    )
