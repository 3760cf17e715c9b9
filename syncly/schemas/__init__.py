from syncly.schemas.webhook import MetaWebhookPayload, SweepResponse, WebhookAck

__all__ = ["MetaWebhookPayload", "SweepResponse", "WebhookAck"]
