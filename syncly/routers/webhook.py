import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from syncly.config import settings
from syncly.database import get_db
from syncly.logging_config import get_logger
from syncly.schemas.webhook import MetaWebhookPayload, WebhookAck
from syncly.services.comment_service import handle_comment
from syncly.services.pipeline_service import handle_event
from syncly.services.transport import SUPPORTED_OBJECTS, normalize_webhook

logger = get_logger("webhook")

router = APIRouter()


def verify_signature(body: bytes, signature: Optional[str], app_secret: Optional[str]) -> bool:
    """Check Meta's X-Hub-Signature-256. Skipped when no app secret is configured."""
    if not app_secret:
        return True
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.split("=", 1)[1])


@router.get("/api/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    expected = settings.facebook_verify_token
    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("Webhook verified")
        return PlainTextResponse(hub_challenge or "")
    logger.warning("Webhook verification failed", extra={"context": {"mode": hub_mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/api/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(default=None, alias="X-Hub-Signature-256"),
    db: Session = Depends(get_db),
) -> WebhookAck:
    raw_body = await request.body()
    if not verify_signature(raw_body, x_hub_signature_256, settings.facebook_app_secret):
        logger.warning("Webhook signature mismatch")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    try:
        body = json.loads(raw_body or b"{}")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    object_type = body.get("object") if isinstance(body, dict) else None
    if object_type not in SUPPORTED_OBJECTS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported object type")

    try:
        payload = MetaWebhookPayload.model_validate(body)
    except ValidationError as exc:
        # Acknowledge anyway so Meta does not keep redelivering a payload we cannot read.
        logger.warning("Malformed webhook payload", extra={"context": {"errors": exc.error_count()}})
        return WebhookAck()

    events, comments = normalize_webhook(payload)

    for event in events:
        try:
            result = await handle_event(db, event)
            logger.info(
                "Webhook event handled",
                extra={"context": {"platform": event.platform.value, "kind": event.kind.value, "result": result}},
            )
        except Exception as exc:
            db.rollback()
            logger.error(
                "Webhook event failed",
                extra={"context": {"platform": event.platform.value, "sender_id": event.sender_id, "error": str(exc)}},
                exc_info=True,
            )

    for comment in comments:
        try:
            await handle_comment(db, comment)
        except Exception as exc:
            db.rollback()
            logger.error(
                "Comment handling failed",
                extra={"context": {"comment_id": comment.comment_id, "error": str(exc)}},
                exc_info=True,
            )

    return WebhookAck()
