"""PlayCamp Webhook Signature Verification.

Provides HMAC-SHA256 signature verification for batched webhook deliveries
with constant-time comparison to prevent timing attacks.

Two header formats are accepted:
- Simple: "<hex-digest>" computed over the raw body
- Timestamped: "t=<unix-seconds>,v1=<hex-digest>" computed over "<t>.<body>"

Security Features:
- HMAC-SHA256 signature generation and verification
- Constant-time comparison to prevent timing attacks
- Timestamp validation to prevent replay attacks (timestamped format)
- The expected digest is never exposed in results or logs

Usage:
    from playcamp_webhooks import WebhookVerifier

    verifier = WebhookVerifier(secret="my-webhook-secret")

    result = verifier.verify(
        payload=raw_body,
        signature=request.headers["X-Webhook-Signature"],
    )
    if result:
        for event in result.payload.events:
            ...
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from playcamp_webhooks.events import (
    MalformedPayloadError,
    WebhookEnvelope,
    parse_payload,
)

logger = structlog.get_logger()

DEFAULT_TOLERANCE_SECONDS = 300

_TIMESTAMPED_RE = re.compile(r"^t=([0-9]{1,20}),v1=([0-9a-fA-F]+)$")


class ErrorReason(Enum):
    """Why a webhook delivery was rejected."""

    MISSING_SIGNATURE = "MISSING_SIGNATURE"
    EMPTY_PAYLOAD = "EMPTY_PAYLOAD"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    TIMESTAMP_OUT_OF_TOLERANCE = "TIMESTAMP_OUT_OF_TOLERANCE"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"


@dataclass
class VerificationResult:
    """Result of webhook verification."""

    valid: bool
    """Whether the delivery is authentic and well-formed."""

    payload: WebhookEnvelope | None = None
    """Parsed envelope, set only when valid."""

    error: ErrorReason | None = None
    """Rejection reason, set only when invalid."""

    message: str | None = None
    """Human-readable detail. Never contains the expected digest."""

    timestamp: int | None = None
    """Signing timestamp if the header was in timestamped format."""

    def __bool__(self) -> bool:
        """Allow using result in boolean context."""
        return self.valid

    @classmethod
    def ok(cls, payload: WebhookEnvelope, timestamp: int | None = None) -> VerificationResult:
        return cls(valid=True, payload=payload, timestamp=timestamp)

    @classmethod
    def fail(
        cls,
        error: ErrorReason,
        message: str,
        timestamp: int | None = None,
    ) -> VerificationResult:
        return cls(valid=False, error=error, message=message, timestamp=timestamp)


@dataclass(frozen=True)
class ParsedSignature:
    """A signature header split into its parts."""

    signature: str
    timestamp: int | None = None
    # "t" exactly as sent; the digest covers this string, not str(timestamp)
    timestamp_raw: str | None = None

    @property
    def timestamped(self) -> bool:
        return self.timestamp is not None


def parse_signature_header(header_value: str) -> ParsedSignature | None:
    """Split a signature header into digest and optional timestamp.

    Headers matching "t=<digits>,v1=<hex>" are treated as timestamped,
    where <digits> is 1 to 20 ASCII digits. Anything else is taken as a
    simple hex digest, which will then fail to match.

    Args:
        header_value: The raw signature header value.

    Returns:
        ParsedSignature, or None if the header is empty.
    """
    if not header_value:
        return None

    value = header_value.strip()
    if not value:
        return None

    match = _TIMESTAMPED_RE.match(value)
    if match:
        return ParsedSignature(
            signature=match.group(2).lower(),
            timestamp=int(match.group(1)),
            timestamp_raw=match.group(1),
        )

    return ParsedSignature(signature=value.lower())


def check_timestamp(
    timestamp: int,
    now: int | float,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """Check a signing timestamp against the replay window.

    Args:
        timestamp: Unix seconds from the signature header.
        now: Current unix seconds.
        tolerance_seconds: Maximum allowed clock difference in either direction.

    Returns:
        True if abs(now - timestamp) <= tolerance_seconds.
    """
    return abs(now - timestamp) <= tolerance_seconds


def _secret_bytes(secret: str | bytes) -> bytes:
    if isinstance(secret, bytes):
        return secret
    if isinstance(secret, str):
        return secret.encode("utf-8")
    raise TypeError(f"Webhook secret must be str or bytes, not {type(secret).__name__}")


def _payload_bytes(payload: str | bytes) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


class WebhookVerifier:
    """Webhook signature verifier using HMAC-SHA256.

    Holds the shared secret and replay window as explicit configuration.
    Instances carry no mutable state and are safe to share between
    concurrent requests.
    """

    def __init__(
        self,
        secret: str | bytes,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the webhook verifier.

        Args:
            secret: The shared secret issued at webhook registration.
            tolerance_seconds: Replay window for timestamped signatures (default 5 min).
            clock: Source of the current unix time.
        """
        if tolerance_seconds < 0:
            raise ValueError(f"tolerance_seconds must be >= 0, got {tolerance_seconds}")
        self._secret = _secret_bytes(secret)
        if not self._secret:
            raise ValueError("Webhook secret must not be empty")
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock

    def __repr__(self) -> str:
        return f"WebhookVerifier(secret=***, tolerance_seconds={self.tolerance_seconds})"

    def compute_signature(self, payload: bytes) -> str:
        """Compute the lowercase hex HMAC-SHA256 of a payload."""
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def compute_signature_with_timestamp(self, payload: bytes, timestamp: int | str) -> str:
        """Compute HMAC-SHA256 over "<timestamp>.<payload>".

        Pass the header's "t" string when verifying so leading zeros are
        signed as sent.
        """
        signed_payload = f"{timestamp}.".encode("ascii") + payload
        return self.compute_signature(signed_payload)

    def construct_signature(
        self,
        payload: str | bytes,
        timestamped: bool = False,
        now: int | None = None,
    ) -> str:
        """Build a signature header value for a payload.

        Args:
            payload: The raw body to sign.
            timestamped: Produce "t=<unix>,v1=<hex>" instead of a bare digest.
            now: Unix seconds to embed; defaults to the verifier clock.

        Returns:
            Header value accepted by verify().
        """
        body = _payload_bytes(payload)
        if not timestamped:
            return self.compute_signature(body)

        timestamp = int(self._clock()) if now is None else int(now)
        digest = self.compute_signature_with_timestamp(body, timestamp)
        return f"t={timestamp},v1={digest}"

    def _constant_time_compare(self, a: str, b: str) -> bool:
        """Compare two strings in constant time.

        Args:
            a: First string.
            b: Second string.

        Returns:
            True if strings are equal.
        """
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))

    def verify(
        self,
        payload: str | bytes | None,
        signature: str | None,
        now: int | float | None = None,
    ) -> VerificationResult:
        """Verify a webhook delivery and parse its envelope.

        Args:
            payload: The raw request body bytes, exactly as received.
            signature: The signature header value.
            now: Current unix seconds; defaults to the verifier clock.

        Returns:
            VerificationResult with the parsed envelope or a rejection reason.
        """
        parsed = parse_signature_header(signature or "")
        if parsed is None:
            result = VerificationResult.fail(
                ErrorReason.MISSING_SIGNATURE,
                "No signature provided",
            )
            logger.info("Webhook rejected", reason=result.error.value)
            return result

        if not payload:
            result = VerificationResult.fail(
                ErrorReason.EMPTY_PAYLOAD,
                "Request body is empty",
                timestamp=parsed.timestamp,
            )
            logger.info("Webhook rejected", reason=result.error.value)
            return result

        body = _payload_bytes(payload)

        if parsed.timestamped:
            expected = self.compute_signature_with_timestamp(body, parsed.timestamp_raw)
        else:
            expected = self.compute_signature(body)

        if not self._constant_time_compare(parsed.signature, expected):
            logger.warning(
                "Webhook signature mismatch, possible forged request",
                reason=ErrorReason.INVALID_SIGNATURE.value,
                timestamped=parsed.timestamped,
            )
            return VerificationResult.fail(
                ErrorReason.INVALID_SIGNATURE,
                "Signature mismatch",
                timestamp=parsed.timestamp,
            )

        if parsed.timestamped:
            current_time = self._clock() if now is None else now
            if not check_timestamp(parsed.timestamp, current_time, self.tolerance_seconds):
                skew = int(current_time - parsed.timestamp)
                logger.warning(
                    "Webhook timestamp outside tolerance window",
                    reason=ErrorReason.TIMESTAMP_OUT_OF_TOLERANCE.value,
                    skew_seconds=skew,
                    tolerance_seconds=self.tolerance_seconds,
                )
                return VerificationResult.fail(
                    ErrorReason.TIMESTAMP_OUT_OF_TOLERANCE,
                    f"Timestamp {parsed.timestamp} is outside tolerance window",
                    timestamp=parsed.timestamp,
                )

        try:
            envelope = parse_payload(body)
        except MalformedPayloadError as e:
            logger.info(
                "Webhook rejected",
                reason=ErrorReason.MALFORMED_PAYLOAD.value,
                error=str(e),
            )
            return VerificationResult.fail(
                ErrorReason.MALFORMED_PAYLOAD,
                str(e),
                timestamp=parsed.timestamp,
            )

        return VerificationResult.ok(envelope, timestamp=parsed.timestamp)


def construct_webhook_signature(
    payload: str | bytes,
    secret: str | bytes,
    timestamped: bool = False,
    now: int | None = None,
) -> str:
    """Build a signature header value without keeping a verifier around."""
    return WebhookVerifier(secret).construct_signature(payload, timestamped=timestamped, now=now)


def verify_webhook(
    payload: str | bytes | None,
    signature: str | None,
    secret: str | bytes,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: int | float | None = None,
) -> VerificationResult:
    """Verify a single delivery with a throwaway verifier."""
    return WebhookVerifier(secret, tolerance_seconds=tolerance_seconds).verify(
        payload, signature, now=now
    )
