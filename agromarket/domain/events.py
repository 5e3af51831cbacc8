# agromarket/domain/events.py
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from agromarket.domain.errors import MalformedEvent

EventKind = Literal["succeeded", "failed", "canceled", "unknown"]

#typ zdarzenia stripe -> rodzaj przejscia platnosci
_EVENT_KINDS: Dict[str, EventKind] = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "canceled",
}

#status payment intentu (GET /payment_intents/:id) -> rodzaj
_INTENT_STATUS_KINDS: Dict[str, EventKind] = {
    "succeeded": "succeeded",
    "canceled": "canceled",
}

#rodzaj -> status platnosci w bazie
PAYMENT_STATUS_FOR_KIND: Dict[str, str] = {
    "succeeded": "paid",
    "failed": "failed",
    "canceled": "canceled",
}


class GatewayEvent(BaseModel):
    kind: EventKind
    event_type: str
    intent_id: str
    order_id: Optional[int] = None
    order_ids: List[int] = Field(default_factory=list)
    event_id: Optional[str] = None


def decode_event(payload: Any) -> GatewayEvent:
    """
    Dekoduje payload webhooka {type, data.object.id, data.object.metadata.order_id}.
    - brak type / data.object.id -> MalformedEvent (400)
    - nieznany type -> kind="unknown" (potwierdzany i ignorowany)
    """
    if not isinstance(payload, dict):
        raise MalformedEvent("Payload webhooka musi byc obiektem JSON")

    event_type = payload.get("type")
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(event_type, str) or not event_type or not isinstance(obj, dict):
        raise MalformedEvent("Brak pola type lub data.object")

    intent_id = obj.get("id")
    if not isinstance(intent_id, str) or not intent_id:
        raise MalformedEvent("Brak data.object.id")

    metadata = obj.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise MalformedEvent("data.object.metadata musi byc obiektem")

    order_id = None
    raw_order_id = metadata.get("order_id")
    if raw_order_id not in (None, ""):
        try:
            order_id = int(raw_order_id)
        except (TypeError, ValueError):
            raise MalformedEvent(f"Niepoprawne metadata.order_id: {raw_order_id!r}")

    #jeden intent placi za wszystkie zamowienia checkoutu: "12,13"
    order_ids = []
    raw_order_ids = metadata.get("order_ids")
    if raw_order_ids not in (None, ""):
        try:
            order_ids = [int(i) for i in str(raw_order_ids).split(",") if i.strip()]
        except ValueError:
            raise MalformedEvent(f"Niepoprawne metadata.order_ids: {raw_order_ids!r}")
    if order_id is not None and order_id not in order_ids:
        order_ids.insert(0, order_id)

    return GatewayEvent(
        kind=_EVENT_KINDS.get(event_type, "unknown"),
        event_type=event_type,
        intent_id=intent_id,
        order_id=order_id,
        order_ids=order_ids,
        event_id=payload.get("id") if isinstance(payload.get("id"), str) else None,
    )


def kind_from_intent_status(status: str | None) -> EventKind:
    #processing / requires_* -> jeszcze bez wyniku (nieudana proba jest raportowana webhookiem)
    return _INTENT_STATUS_KINDS.get(status or "", "unknown")
