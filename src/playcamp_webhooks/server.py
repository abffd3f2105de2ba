"""aiohttp receiver for batched webhook deliveries.

The handler reads the body with request.read() and passes those exact
bytes to the verifier. Any middleware that decodes and re-encodes JSON
before this point breaks signature verification.

Status mapping:
- 401: missing signature, signature mismatch, timestamp outside tolerance
- 400: empty body, malformed payload
- 200: verified and dispatched, with or without handler failures
- 500: handler failures when fail_on_handler_error is set
"""

from __future__ import annotations

import structlog
from aiohttp import web

from playcamp_webhooks.dispatcher import EventDispatcher
from playcamp_webhooks.verifier import ErrorReason, WebhookVerifier

logger = structlog.get_logger()

STATUS_BY_REASON: dict[ErrorReason, int] = {
    ErrorReason.MISSING_SIGNATURE: 401,
    ErrorReason.INVALID_SIGNATURE: 401,
    ErrorReason.TIMESTAMP_OUT_OF_TOLERANCE: 401,
    ErrorReason.EMPTY_PAYLOAD: 400,
    ErrorReason.MALFORMED_PAYLOAD: 400,
}


class WebhookReceiver:
    """Verifies and dispatches deliveries posted to a single route."""

    def __init__(
        self,
        verifier: WebhookVerifier,
        dispatcher: EventDispatcher,
        signature_header: str = "X-Webhook-Signature",
        fail_on_handler_error: bool = False,
    ) -> None:
        self.verifier = verifier
        self.dispatcher = dispatcher
        self.signature_header = signature_header
        self.fail_on_handler_error = fail_on_handler_error

    async def handle_webhook(self, request: web.Request) -> web.Response:
        """Verify the raw body, then dispatch its events in order."""
        body = await request.read()
        signature = request.headers.get(self.signature_header)

        result = self.verifier.verify(body, signature)
        if not result.valid:
            return web.json_response(
                {"error": result.error.value},
                status=STATUS_BY_REASON[result.error],
            )

        report = await self.dispatcher.dispatch_async(result.payload)
        status = 500 if self.fail_on_handler_error and report.failed else 200

        return web.json_response(
            {
                "processed": report.processed,
                "failed": report.failed,
                "unhandled": report.unhandled,
            },
            status=status,
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})


def create_app(
    verifier: WebhookVerifier,
    dispatcher: EventDispatcher,
    *,
    signature_header: str = "X-Webhook-Signature",
    path: str = "/webhooks",
    fail_on_handler_error: bool = False,
) -> web.Application:
    """Build an aiohttp application serving the webhook route and /health."""
    receiver = WebhookReceiver(
        verifier,
        dispatcher,
        signature_header=signature_header,
        fail_on_handler_error=fail_on_handler_error,
    )

    app = web.Application()
    app.router.add_post(path, receiver.handle_webhook)
    app.router.add_get("/health", receiver.handle_health)
    return app


async def start_server(
    app: web.Application,
    host: str = "127.0.0.1",
    port: int = 8080,
) -> web.AppRunner:
    """Start serving app and return its runner. Call runner.cleanup() to stop."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Webhook receiver started", host=host, port=port)
    return runner
