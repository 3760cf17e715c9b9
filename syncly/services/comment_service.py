"""Public reply to feed comments that look like purchase interest."""

import re
from typing import Optional

from sqlalchemy.orm import Session

from syncly.logging_config import get_logger
from syncly.services.customer_service import get_access_token, resolve_shop
from syncly.services.history_service import save_chat_history
from syncly.services.intent_service import normalize_for_matching
from syncly.services.messenger_service import MessengerService
from syncly.services.transport import CommentEvent

logger = get_logger("comment_service")

COMMENT_REPLY_INTENT = "COMMENT_REPLY"
MIN_COMMENT_LENGTH = 2

PRODUCT_KEYWORDS = (
    "үнэ",
    "хэд",
    "байна уу",
    "байгаа юу",
    "авъя",
    "авья",
    "авах",
    "захиал",
    "размер",
    "хэмжээ",
    "өнгө",
    "хүргэлт",
    "мэдээлэл",
    "инбокс",
    "price",
    "how much",
    "order",
    "inbox",
    "info",
    "dm",
)

IGNORE_KEYWORDS = ("хаха", "haha", "lol", "гоё", "wow", "nice")

HAS_WORD_CHARACTER = re.compile(r"\w")


def should_reply_to_comment(text: Optional[str]) -> bool:
    normalized = normalize_for_matching(text)
    if len(normalized) < MIN_COMMENT_LENGTH:
        return False
    if not HAS_WORD_CHARACTER.search(normalized):
        return False
    has_product_interest = any(keyword in normalized for keyword in PRODUCT_KEYWORDS)
    if not has_product_interest:
        return False
    if any(keyword in normalized for keyword in IGNORE_KEYWORDS) and len(normalized.split()) <= 2:
        return False
    return True


def generate_comment_reply(shop_name: Optional[str], commenter_name: Optional[str] = None) -> str:
    greeting = f"Сайн байна уу, {commenter_name}!" if commenter_name else "Сайн байна уу!"
    shop = shop_name or "манай хуудас"
    return f"{greeting} Дэлгэрэнгүй мэдээллийг {shop}-ын чат руу бичээрэй, бид шууд хариулна 😊"


async def handle_comment(db: Session, event: CommentEvent) -> bool:
    shop = resolve_shop(db, event.platform, event.account_id)
    if shop is None:
        logger.warning(
            "Comment for unknown account",
            extra={"context": {"platform": event.platform.value, "account_id": event.account_id}},
        )
        return False
    if event.commenter_id and event.commenter_id == event.account_id:
        return False
    if not shop.is_ai_active or not should_reply_to_comment(event.text):
        return False

    access_token = get_access_token(shop, event.platform)
    if not access_token:
        logger.warning("Comment reply skipped, no access token", extra={"context": {"shop_id": str(shop.id)}})
        return False

    reply = generate_comment_reply(shop.name, event.commenter_name)
    result = await MessengerService(access_token).reply_to_comment(event.comment_id, reply, event.platform)
    if not result.ok:
        return False

    save_chat_history(
        db,
        shop_id=shop.id,
        customer_id=None,
        message=event.text,
        response=reply,
        intent=COMMENT_REPLY_INTENT,
    )
    logger.info("Comment replied", extra={"context": {"shop_id": str(shop.id), "comment_id": event.comment_id}})
    return True
