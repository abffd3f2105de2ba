"""PlayCamp Webhook Verification and Dispatch.

Authenticates batched webhook deliveries with HMAC-SHA256 and routes each
event to integrator-supplied handlers.

Supported signature formats:
- Simple: "<hex>" HMAC-SHA256 of the raw body
- Timestamped: "t=<unix>,v1=<hex>" HMAC-SHA256 of "<unix>.<body>", with
  replay-window validation

Usage:
    from playcamp_webhooks import EventDispatcher, WebhookVerifier

    verifier = WebhookVerifier(secret=WEBHOOK_SECRET)
    dispatcher = EventDispatcher()

    @dispatcher.register("payment.created")
    def on_payment(data):
        ...

    result = verifier.verify(raw_body, headers["X-Webhook-Signature"])
    if result.valid:
        report = dispatcher.dispatch(result.payload)
    else:
        print(f"Rejected: {result.error.value}")
"""

from playcamp_webhooks.dispatcher import (
    DispatchFailure,
    DispatchReport,
    EventDispatcher,
    dispatch,
)
from playcamp_webhooks.events import (
    EVENT_DATA_MODELS,
    CouponRedeemedData,
    EventType,
    MalformedPayloadError,
    PaymentCreatedData,
    PaymentRefundedData,
    RewardItem,
    SponsorChangedData,
    SponsorCreatedData,
    WebhookEnvelope,
    WebhookEvent,
    parse_payload,
    serialize_envelope,
)
from playcamp_webhooks.verifier import (
    DEFAULT_TOLERANCE_SECONDS,
    ErrorReason,
    ParsedSignature,
    VerificationResult,
    WebhookVerifier,
    check_timestamp,
    construct_webhook_signature,
    parse_signature_header,
    verify_webhook,
)

__version__ = "0.1.0"

__all__ = [
    # Verification
    "WebhookVerifier",
    "VerificationResult",
    "ErrorReason",
    "ParsedSignature",
    "DEFAULT_TOLERANCE_SECONDS",
    "check_timestamp",
    "construct_webhook_signature",
    "parse_signature_header",
    "verify_webhook",
    # Payload
    "WebhookEnvelope",
    "WebhookEvent",
    "EventType",
    "EVENT_DATA_MODELS",
    "CouponRedeemedData",
    "PaymentCreatedData",
    "PaymentRefundedData",
    "SponsorCreatedData",
    "SponsorChangedData",
    "RewardItem",
    "MalformedPayloadError",
    "parse_payload",
    "serialize_envelope",
    # Dispatch
    "EventDispatcher",
    "DispatchReport",
    "DispatchFailure",
    "dispatch",
]
