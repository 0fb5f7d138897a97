"""Typed decoding of Square webhook envelopes.

Known event types decode into a discriminated union keyed on ``type``;
anything else, or a known type whose payload fails validation, becomes an
``UnrecognizedEvent`` so the dispatcher can acknowledge it without
running handlers.
"""

from __future__ import annotations

from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _SquareModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class Money(_SquareModel):
    amount: int | None = None
    currency: str | None = None


class CustomerObject(_SquareModel):
    id: str
    given_name: str | None = None
    family_name: str | None = None
    email_address: str | None = None
    phone_number: str | None = None
    reference_id: str | None = None


class PaymentObject(_SquareModel):
    id: str
    status: str | None = None
    customer_id: str | None = None
    order_id: str | None = None
    location_id: str | None = None
    amount_money: Money | None = None
    total_money: Money | None = None

    @property
    def is_completed(self) -> bool:
        return (self.status or "").upper() == "COMPLETED"


class BookingObject(_SquareModel):
    id: str
    status: str | None = None
    customer_id: str | None = None
    location_id: str | None = None
    start_at: str | None = None
    version: int | None = None
    custom_fields: list[dict[str, Any]] = Field(default_factory=list)
    appointment_segments: list[dict[str, Any]] = Field(default_factory=list)


class OrderSummary(_SquareModel):
    order_id: str
    state: str | None = None
    location_id: str | None = None
    version: int | None = None


class GiftCardObject(_SquareModel):
    id: str
    gan: str | None = None
    state: str | None = None
    balance_money: Money | None = None


class GiftCardActivityObject(_SquareModel):
    id: str | None = None
    type: str | None = None
    gift_card_id: str | None = None
    gift_card_gan: str | None = None
    gift_card_balance_money: Money | None = None


class CustomerPayload(_SquareModel):
    customer: CustomerObject


class PaymentPayload(_SquareModel):
    payment: PaymentObject


class BookingPayload(_SquareModel):
    booking: BookingObject


class OrderPayload(_SquareModel):
    order_created: OrderSummary | None = None
    order_updated: OrderSummary | None = None


class GiftCardPayload(_SquareModel):
    gift_card: GiftCardObject | None = None
    gift_card_activity: GiftCardActivityObject | None = None


ObjectT = TypeVar("ObjectT", bound=BaseModel)


class EventData(_SquareModel, Generic[ObjectT]):
    type: str | None = None
    id: str | None = None
    object: ObjectT


class _Envelope(_SquareModel):
    event_id: str | None = None
    merchant_id: str | None = None
    created_at: str | None = None


class CustomerEvent(_Envelope):
    type: Literal["customer.created", "customer.updated"]
    data: EventData[CustomerPayload]

    @property
    def customer(self) -> CustomerObject:
        return self.data.object.customer


class PaymentEvent(_Envelope):
    type: Literal["payment.created", "payment.updated"]
    data: EventData[PaymentPayload]

    @property
    def payment(self) -> PaymentObject:
        return self.data.object.payment


class BookingEvent(_Envelope):
    type: Literal["booking.created", "booking.updated"]
    data: EventData[BookingPayload]

    @property
    def booking(self) -> BookingObject:
        return self.data.object.booking


class OrderEvent(_Envelope):
    type: Literal["order.created", "order.updated"]
    data: EventData[OrderPayload]

    @property
    def order(self) -> OrderSummary | None:
        payload = self.data.object
        return payload.order_created or payload.order_updated


class GiftCardEvent(_Envelope):
    type: Literal["gift_card.updated", "gift_card.activity.created"]
    data: EventData[GiftCardPayload]

    @property
    def gan(self) -> str | None:
        payload = self.data.object
        if payload.gift_card and payload.gift_card.gan:
            return payload.gift_card.gan
        if payload.gift_card_activity:
            return payload.gift_card_activity.gift_card_gan
        return None

    @property
    def balance_cents(self) -> int | None:
        payload = self.data.object
        money = None
        if payload.gift_card is not None:
            money = payload.gift_card.balance_money
        elif payload.gift_card_activity is not None:
            money = payload.gift_card_activity.gift_card_balance_money
        return money.amount if money else None


class UnrecognizedEvent(BaseModel):
    """Any delivery the service does not act on."""

    type: str
    event_id: str | None = None
    reason: str
    raw: dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[CustomerEvent, PaymentEvent, BookingEvent, OrderEvent, GiftCardEvent],
    Field(discriminator="type"),
]
SquareEvent = Union[CustomerEvent, PaymentEvent, BookingEvent, OrderEvent, GiftCardEvent, UnrecognizedEvent]

_KNOWN_EVENT_ADAPTER: TypeAdapter[KnownEvent] = TypeAdapter(KnownEvent)
KNOWN_EVENT_TYPES = frozenset(
    {
        "customer.created",
        "customer.updated",
        "payment.created",
        "payment.updated",
        "booking.created",
        "booking.updated",
        "order.created",
        "order.updated",
        "gift_card.updated",
        "gift_card.activity.created",
    }
)


def decode_event(raw: Any) -> SquareEvent:
    """Validate a parsed webhook body into one of the known event variants."""

    if not isinstance(raw, dict):
        return UnrecognizedEvent(type="<invalid>", reason="payload is not a JSON object")

    event_type = raw.get("type")
    event_id = raw.get("event_id") if isinstance(raw.get("event_id"), str) else None
    if not isinstance(event_type, str) or not event_type:
        return UnrecognizedEvent(type="<missing>", event_id=event_id, reason="missing event type", raw=raw)
    if event_type not in KNOWN_EVENT_TYPES:
        return UnrecognizedEvent(type=event_type, event_id=event_id, reason="unhandled event type", raw=raw)

    try:
        return _KNOWN_EVENT_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        return UnrecognizedEvent(
            type=event_type,
            event_id=event_id,
            reason=f"invalid payload: {exc.error_count()} validation error(s)",
            raw=raw,
        )
