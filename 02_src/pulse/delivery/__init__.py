"""Webhook delivery module."""

from .dispatcher import WebhookDispatcher
from .webhook import IWebhookDeliveryService, WebhookDeliveryService

__all__ = ["IWebhookDeliveryService", "WebhookDeliveryService", "WebhookDispatcher"]
