# pipeline/normalizer.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - GATEWAY PAYLOAD NORMALIZER
# ============================================================================
# The gateway places transaction data under data.charge.attributes, under
# data.charge, under data, or at the top level depending on the callback.
# Every field is declared once with its search locations (highest priority
# first) and the key aliases accepted at each location.
# ============================================================================

import json
from dataclasses import dataclass
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel

from pipeline.errors import MalformedPayload

logger = structlog.get_logger(component="normalizer")

ACCEPTED_EVENT_TYPES = frozenset({"approved", "declined"})


# ============================================================================
# SECTION 1: FIELD SPECS
# ============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """One normalized field: value kind plus ordered (location, aliases) pairs."""
    name: str
    kind: str  # "string" | "number"
    locations: tuple[tuple[str, tuple[str, ...]], ...]


FIELD_SPECS: tuple[FieldSpec, ...] = (
    FieldSpec("event_type", "string", (
        ("top", ("type",)),
        ("webhook", ("type",)),
    )),
    FieldSpec("order_ref", "string", (
        ("charge", ("order_id", "orderId")),
        ("data", ("order_id", "orderId", "reference")),
        ("top", ("order_id", "orderId", "reference")),
    )),
    FieldSpec("status", "string", (
        ("attributes", ("status", "transaction_status")),
        ("charge", ("status", "type")),
        ("top", ("status", "transaction_status", "state")),
    )),
    FieldSpec("transaction_id", "string", (
        ("charge", ("psp_order_id", "id", "uuid", "transaction_id", "transactionId")),
        ("data", ("transaction_id", "transactionId")),
        ("top", ("transaction_id", "transactionId", "id")),
    )),
    FieldSpec("amount", "number", (
        ("attributes", ("amount", "total_amount")),
        ("charge", ("amount",)),
        ("top", ("amount", "transaction_amount")),
    )),
    FieldSpec("currency", "string", (
        ("attributes", ("currency",)),
        ("charge", ("currency",)),
        ("top", ("currency", "transaction_currency")),
    )),
    # Detail fields recorded on the order, never used for routing
    FieldSpec("charge_id", "string", (("charge", ("id", "uuid")),)),
    FieldSpec("payment_method", "string", (("attributes", ("payment_method",)),)),
    FieldSpec("decline_reason", "string", (("attributes", ("decline_reason",)),)),
    FieldSpec("psp_name", "string", (("data", ("psp_name",)),)),
    FieldSpec("mid_alias", "string", (("attributes", ("mid_alias",)),)),
    FieldSpec("card_brand", "string", (("attributes", ("card_brand",)),)),
    FieldSpec("card_last4", "string", (("attributes", ("card_number",)),)),
    FieldSpec("card_masked", "string", (("attributes", ("card_masked_number",)),)),
    FieldSpec("customer_email", "string", (("source", ("email",)),)),
    FieldSpec("customer_ip", "string", (("source", ("ip_address",)),)),
    FieldSpec("gateway_created_at", "number", (("attributes", ("created_at",)),)),
)


# ============================================================================
# SECTION 2: NORMALIZED EVENT
# ============================================================================

class NormalizedEvent(BaseModel):
    """Canonical view of one gateway callback"""
    event_type: Optional[str] = None
    order_ref: Optional[str] = None
    status: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None

    charge_id: Optional[str] = None
    payment_method: Optional[str] = None
    decline_reason: Optional[str] = None
    psp_name: Optional[str] = None
    mid_alias: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    card_masked: Optional[str] = None
    customer_email: Optional[str] = None
    customer_ip: Optional[str] = None
    gateway_created_at: Optional[float] = None

    @property
    def is_actionable(self) -> bool:
        return self.event_type in ACCEPTED_EVENT_TYPES

    @property
    def effective_status(self) -> Optional[str]:
        """Explicit status, else the event type itself."""
        return self.status or self.event_type


# ============================================================================
# SECTION 3: EXTRACTION
# ============================================================================

def extract_string(obj: Any, *keys: str) -> Optional[str]:
    """First value under `keys` that is a non-empty string."""
    if not isinstance(obj, dict):
        return None
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def extract_number(obj: Any, *keys: str) -> Optional[float]:
    """First value under `keys` that is an int or float (bools rejected)."""
    if not isinstance(obj, dict):
        return None
    for key in keys:
        value = obj.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None


_EXTRACTORS = {"string": extract_string, "number": extract_number}


def _as_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def _locations(payload: dict) -> dict[str, Optional[dict]]:
    data = _as_dict(payload.get("data"))
    charge = _as_dict(data.get("charge")) if data else None
    attributes = _as_dict(charge.get("attributes")) if charge else None
    source = _as_dict(attributes.get("source")) if attributes else None
    return {
        "top": payload,
        "webhook": _as_dict(payload.get("webhook")),
        "data": data,
        "charge": charge,
        "attributes": attributes,
        "source": source,
    }


def resolve_field(spec: FieldSpec, locations: dict[str, Optional[dict]]) -> Any:
    extract = _EXTRACTORS[spec.kind]
    for location, aliases in spec.locations:
        value = extract(locations.get(location), *aliases)
        if value is not None:
            return value
    return None


def parse_body(raw: Union[bytes, str, None]) -> dict:
    """Decode the raw request body into a JSON object."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw or not raw.strip():
        raise MalformedPayload("Empty request body")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedPayload("Invalid JSON payload", detail=str(e)) from e
    if not isinstance(payload, dict):
        raise MalformedPayload("Payload must be a JSON object", received=type(payload).__name__)
    return payload


def normalize(payload: dict) -> NormalizedEvent:
    """Apply every FieldSpec to the payload. Pure; never raises for shape issues."""
    if not isinstance(payload, dict):
        raise MalformedPayload("Payload must be a JSON object", received=type(payload).__name__)

    locations = _locations(payload)
    values = {spec.name: resolve_field(spec, locations) for spec in FIELD_SPECS}
    event = NormalizedEvent(**values)

    logger.debug(
        "payload_normalized",
        event_type=event.event_type,
        order_ref=event.order_ref,
        status=event.status,
        has_transaction_id=event.transaction_id is not None,
        amount=event.amount,
        currency=event.currency,
    )
    return event
