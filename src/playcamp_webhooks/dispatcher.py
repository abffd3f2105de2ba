"""Ordered, failure-isolated dispatch of batch events.

Events in one batch are handled strictly in array order, one at a time,
since later events may depend on earlier ones (sponsor.created followed by
sponsor.changed for the same user). A handler that raises is recorded in
the report and the batch continues. Tags without a handler are counted as
unhandled.

The dispatcher never retries. Redelivery is the sender's job, so handlers
should be idempotent on transactionId / usageId.

Example:
    dispatcher = EventDispatcher()

    @dispatcher.register("payment.created")
    def on_payment(data):
        record_payment(data["transactionId"])

    report = dispatcher.dispatch(result.payload)
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from playcamp_webhooks.events import EventType, WebhookEnvelope, WebhookEvent

logger = structlog.get_logger()

Handler = Callable[[Any], Any]
AsyncHandler = Callable[[Any], Awaitable[Any]]


@dataclass
class DispatchFailure:
    """A handler that raised while processing one event."""

    index: int
    event: str
    error: BaseException

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "event": self.event,
            "error": f"{type(self.error).__name__}: {self.error}",
        }


@dataclass
class DispatchReport:
    """Summary of one dispatch pass over a batch."""

    processed: int = 0
    failed: int = 0
    unhandled: int = 0
    failures: list[DispatchFailure] = field(default_factory=list)
    unhandled_events: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.failed + self.unhandled

    @property
    def ok(self) -> bool:
        """True when no handler failed."""
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "unhandled": self.unhandled,
            "failures": [f.to_dict() for f in self.failures],
        }


def _tag(event_type: str | EventType) -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    if not isinstance(event_type, str) or not event_type:
        raise ValueError(f"Event tag must be a non-empty string, got {event_type!r}")
    return event_type


class EventDispatcher:
    """Routes each event in a batch to the handler registered for its tag.

    Handlers can be registered on the instance, passed per call, or both;
    per-call handlers take precedence for the same tag.
    """

    def __init__(
        self,
        handlers: Mapping[str | EventType, Handler] | None = None,
        validate_data: bool = False,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            handlers: Initial tag to handler mapping.
            validate_data: Pass the typed data model instead of the raw dict.
                Data that fails validation counts as a handler failure.
        """
        self._handlers: dict[str, Handler] = {}
        self.validate_data = validate_data
        for event_type, handler in (handlers or {}).items():
            self.on(event_type, handler)

    @property
    def handlers(self) -> dict[str, Handler]:
        return dict(self._handlers)

    def on(self, event_type: str | EventType, handler: Handler) -> None:
        """Register handler for an event tag, replacing any existing one."""
        if not callable(handler):
            raise TypeError(f"Handler for {event_type!r} is not callable")
        self._handlers[_tag(event_type)] = handler

    def register(self, event_type: str | EventType) -> Callable[[Handler], Handler]:
        """Decorator form of on()."""

        def decorator(handler: Handler) -> Handler:
            self.on(event_type, handler)
            return handler

        return decorator

    def _resolve(
        self,
        handlers: Mapping[str | EventType, Handler] | None,
    ) -> dict[str, Handler]:
        resolved = dict(self._handlers)
        for event_type, handler in (handlers or {}).items():
            resolved[_tag(event_type)] = handler
        return resolved

    def _argument(self, event: WebhookEvent) -> Any:
        if self.validate_data:
            typed = event.typed_data()
            if typed is not None:
                return typed
        return event.data

    def _record_failure(
        self,
        report: DispatchReport,
        index: int,
        event: WebhookEvent,
        error: Exception,
    ) -> None:
        report.failed += 1
        report.failures.append(DispatchFailure(index=index, event=event.event, error=error))
        logger.error(
            "Webhook handler failed",
            tag=event.event,
            index=index,
            error=str(error),
            error_type=type(error).__name__,
        )

    def _record_unhandled(self, report: DispatchReport, index: int, event: WebhookEvent) -> None:
        report.unhandled += 1
        report.unhandled_events.append(event.event)
        logger.debug("No handler for webhook event", tag=event.event, index=index)

    def _log_summary(self, report: DispatchReport) -> None:
        logger.info(
            "Webhook batch dispatched",
            processed=report.processed,
            failed=report.failed,
            unhandled=report.unhandled,
        )

    def dispatch(
        self,
        envelope: WebhookEnvelope,
        handlers: Mapping[str | EventType, Handler] | None = None,
    ) -> DispatchReport:
        """Run every event through its handler, in order.

        Coroutine handlers are not supported here; use dispatch_async().

        Args:
            envelope: A parsed batch.
            handlers: Extra handlers for this call only.

        Returns:
            DispatchReport with counts and captured failures.
        """
        table = self._resolve(handlers)
        report = DispatchReport()

        for index, event in enumerate(envelope.events):
            handler = table.get(event.event)
            if handler is None:
                self._record_unhandled(report, index, event)
                continue

            try:
                outcome = handler(self._argument(event))
                if inspect.isawaitable(outcome):
                    if inspect.iscoroutine(outcome):
                        outcome.close()
                    raise TypeError(
                        f"Handler for {event.event!r} returned an awaitable; use dispatch_async()"
                    )
            except Exception as e:
                self._record_failure(report, index, event, e)
                continue

            report.processed += 1

        self._log_summary(report)
        return report

    async def dispatch_async(
        self,
        envelope: WebhookEnvelope,
        handlers: Mapping[str | EventType, Handler | AsyncHandler] | None = None,
    ) -> DispatchReport:
        """Async variant of dispatch().

        Each handler is awaited to completion before the next event starts.
        Plain functions are called inline.
        """
        table = self._resolve(handlers)
        report = DispatchReport()

        for index, event in enumerate(envelope.events):
            handler = table.get(event.event)
            if handler is None:
                self._record_unhandled(report, index, event)
                continue

            try:
                outcome = handler(self._argument(event))
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self._record_failure(report, index, event, e)
                continue

            report.processed += 1

        self._log_summary(report)
        return report


def dispatch(
    envelope: WebhookEnvelope,
    handlers: Mapping[str | EventType, Handler],
) -> DispatchReport:
    """Dispatch a batch with a one-off handler mapping."""
    return EventDispatcher().dispatch(envelope, handlers)
