from dataclasses import dataclass
from typing import Optional

from syncly.logging_config import get_logger
from syncly.services.messenger_service import MessengerService
from syncly.services.result import Result
from syncly.services.transport import ImageAction, QuickReply

logger = get_logger("dispatch_service")


@dataclass
class DispatchOutcome:
    text_sent: bool
    images_sent: bool = False


async def send_image_action(messenger: MessengerService, recipient_id: str, action: ImageAction) -> Result[dict]:
    if not action.products:
        return Result.failure("Image action without products")
    if action.type == "single" and len(action.products) == 1:
        return await messenger.send_image(recipient_id, action.products[0].image_url)
    return await messenger.send_image_gallery(recipient_id, action.products, confirm_mode=action.type == "confirm")


async def send_text_reply(
    messenger: MessengerService,
    recipient_id: str,
    text: str,
    quick_replies: Optional[list[QuickReply]] = None,
) -> Result[dict]:
    if quick_replies:
        return await messenger.send_quick_replies(recipient_id, text, quick_replies)
    return await messenger.send_text(recipient_id, text)


async def dispatch_reply(
    messenger: MessengerService,
    recipient_id: str,
    text: str,
    image_action: Optional[ImageAction] = None,
    quick_replies: Optional[list[QuickReply]] = None,
) -> DispatchOutcome:
    """Images first (best effort), then the text. Never raises."""
    images_sent = False
    if image_action is not None:
        try:
            image_result = await send_image_action(messenger, recipient_id, image_action)
            images_sent = image_result.ok
            if not image_result.ok:
                logger.warning("Image send failed", extra={"context": {"error": image_result.error}})
        except Exception as exc:
            logger.error("Image send crashed", extra={"context": {"error": str(exc)}})

    text_sent = False
    if text:
        try:
            text_result = await send_text_reply(messenger, recipient_id, text, quick_replies)
            text_sent = text_result.ok
            if not text_result.ok:
                logger.warning("Text send failed", extra={"context": {"error": text_result.error}})
        except Exception as exc:
            logger.error("Text send crashed", extra={"context": {"error": str(exc)}})

    return DispatchOutcome(text_sent=text_sent, images_sent=images_sent)


async def send_presence(messenger: MessengerService, recipient_id: str, *actions: str) -> None:
    """mark_seen / typing_on / typing_off; failures are only logged."""
    for action in actions:
        try:
            result = await messenger.send_sender_action(recipient_id, action)
        except Exception as exc:
            logger.debug(f"Sender action {action} crashed: {exc}")
            continue
        if not result.ok:
            logger.debug(f"Sender action {action} failed: {result.error}")
