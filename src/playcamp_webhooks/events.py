"""Batch envelope and event models.

A delivery body looks like:

    {"events": [{"event": "payment.created",
                 "timestamp": "2026-02-06T12:00:00Z",
                 "data": {...}}]}

The envelope parser only checks structure: each event needs a tag string,
a timestamp string and a data object. Field-level checks for the five known
event types live in the typed data models and run on demand through
WebhookEvent.typed_data(), so producers can add fields without breaking
older consumers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class MalformedPayloadError(ValueError):
    """Raised when a body is not a structurally valid batch envelope."""


class EventType(str, Enum):
    """Event tags with a known data schema."""

    COUPON_REDEEMED = "coupon.redeemed"
    PAYMENT_CREATED = "payment.created"
    PAYMENT_REFUNDED = "payment.refunded"
    SPONSOR_CREATED = "sponsor.created"
    SPONSOR_CHANGED = "sponsor.changed"


class EventData(BaseModel):
    """Base for typed event data. Wire names are camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class RewardItem(EventData):
    item_id: str
    item_quantity: int


class CouponRedeemedData(EventData):
    coupon_code: str
    user_id: str
    usage_id: str
    reward: list[RewardItem] = Field(default_factory=list)


class PaymentCreatedData(EventData):
    transaction_id: str
    user_id: str
    amount: int | float
    currency: str
    creator_key: str | None = None
    campaign_id: str | None = None


class PaymentRefundedData(EventData):
    transaction_id: str
    user_id: str


class SponsorCreatedData(EventData):
    user_id: str
    campaign_id: str
    creator_key: str


class SponsorChangedData(EventData):
    user_id: str
    campaign_id: str
    old_creator_key: str
    new_creator_key: str


EVENT_DATA_MODELS: dict[EventType, type[EventData]] = {
    EventType.COUPON_REDEEMED: CouponRedeemedData,
    EventType.PAYMENT_CREATED: PaymentCreatedData,
    EventType.PAYMENT_REFUNDED: PaymentRefundedData,
    EventType.SPONSOR_CREATED: SponsorCreatedData,
    EventType.SPONSOR_CHANGED: SponsorChangedData,
}


class WebhookEvent(BaseModel):
    """One event in a batch.

    Unknown tags are kept as-is; event_type is None for them.
    """

    model_config = ConfigDict(extra="ignore")

    event: str = Field(min_length=1)
    timestamp: str
    data: dict[str, Any]

    @property
    def event_type(self) -> EventType | None:
        try:
            return EventType(self.event)
        except ValueError:
            return None

    def typed_data(self) -> EventData | None:
        """Validate data against the model for this event's tag.

        Returns:
            The typed data model, or None for unknown tags.

        Raises:
            pydantic.ValidationError: If data does not match the tag's schema.
        """
        event_type = self.event_type
        if event_type is None:
            return None
        return EVENT_DATA_MODELS[event_type].model_validate(self.data)


class WebhookEnvelope(BaseModel):
    """A batch of events in producer order. Empty batches are valid."""

    model_config = ConfigDict(extra="ignore")

    events: list[WebhookEvent]

    def __len__(self) -> int:
        return len(self.events)


def parse_payload(raw_payload: str | bytes) -> WebhookEnvelope:
    """Parse a raw body into a WebhookEnvelope.

    Args:
        raw_payload: UTF-8 JSON body.

    Returns:
        The parsed envelope, events in the order received.

    Raises:
        MalformedPayloadError: If the body is not JSON, lacks an events
            array, or contains an event missing its tag, timestamp or data.
    """
    try:
        return WebhookEnvelope.model_validate_json(raw_payload)
    except ValidationError as e:
        raise MalformedPayloadError(_describe(e)) from e


def serialize_envelope(envelope: WebhookEnvelope) -> bytes:
    """Encode an envelope as compact JSON bytes."""
    return envelope.model_dump_json().encode("utf-8")


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "body"
    return f"Malformed webhook payload at {location}: {first['msg']}"
