"""Webhook server and handlers for hosting service events."""

from mergebot.webhook.handlers import handle_payload
from mergebot.webhook.server import run_webhook_server

__all__ = ["handle_payload", "run_webhook_server"]
