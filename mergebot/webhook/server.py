"""Webhook HTTP server.

Serves GET /health and POST on the configured webhook path. Deliveries
are verified against ``x-hub-signature`` (HMAC-SHA1 of the body) and
handled one at a time under the state lock. Every delivery is answered
with 200 so the host never retries.
"""

import hashlib
import hmac
import json
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

from mergebot.state import AppState

LOG = logging.getLogger("mergebot.webhook")

SIGNATURE_HEADER = "x-hub-signature"


def verify_signature(secret: str, body: bytes, header: str | None) -> bool:
    """Check ``sha1=<hex>`` from the signature header against ``body``."""
    if not header or not header.startswith("sha1="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    return hmac.compare_digest(expected, header[len("sha1="):].strip())


class WebhookHandler(BaseHTTPRequestHandler):
    """Handle GET /health and POST to the webhook path."""

    state: AppState
    secret: str = ""

    def do_GET(self) -> None:
        if self.path == "/health":
            self._reply(200, b"OK")
            return
        self._reply(404, b"")

    def do_POST(self) -> None:
        if self.path != self.state.config.webhook.path:
            self._reply(404, b"")
            return
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length) if length else b""
        self._handle_webhook(body)
        self._reply(200, b"")

    def _handle_webhook(self, body: bytes) -> None:
        if not verify_signature(self.secret, body, self.headers.get(SIGNATURE_HEADER)):
            LOG.warning("Webhook signature mismatch, ignoring delivery")
            return
        try:
            payload = json.loads(body.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            LOG.warning("Invalid webhook JSON. Full payload: %s", body.decode("utf-8", errors="replace"))
            return
        if not isinstance(payload, dict):
            LOG.warning("Ignoring webhook payload of type %s", type(payload).__name__)
            return
        LOG.info("Webhook event: %s", self.headers.get("X-GitHub-Event", ""))
        from mergebot.webhook.handlers import handle_payload

        with self.state.lock:
            handle_payload(self.state, payload)

    def _reply(self, code: int, body: bytes) -> None:
        self.send_response(code)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        LOG.debug(format, *args)


def make_server(state: AppState, secret: str) -> HTTPServer:
    """Bind the webhook server without starting it."""
    WebhookHandler.state = state
    WebhookHandler.secret = secret
    host = state.config.webhook.host
    port = state.config.webhook.port
    return HTTPServer((host, port), WebhookHandler)


def run_webhook_server(state: AppState, secret: str) -> None:
    """Run HTTP server for webhooks and health check."""
    server = make_server(state, secret)
    LOG.info(
        "Webhook server listening on %s:%s%s",
        state.config.webhook.host,
        state.config.webhook.port,
        state.config.webhook.path,
    )
    server.serve_forever()
