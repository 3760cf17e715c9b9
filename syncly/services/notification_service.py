"""Staff notifications for shop events (new order, contact, support, cancel).

Delivery is fire-and-forget: callers schedule a background task and never
wait on, or fail because of, the notification channel.
"""

import asyncio
import html
from typing import Optional

from syncly.config import settings
from syncly.logging_config import get_logger
from syncly.models import Shop
from syncly.services.telegram_client import send_telegram_message

logger = get_logger("notification_service")

NOTIFY_FLAGS = {
    "order": "notify_on_order",
    "contact": "notify_on_contact",
    "support": "notify_on_support",
    "cancel": "notify_on_cancel",
}

EVENT_TITLES = {
    "order": "🛒 Шинэ захиалга",
    "contact": "📞 Холбоо барих мэдээлэл",
    "support": "🙋 Ажилтны тусламж хүссэн",
    "cancel": "❌ Захиалга цуцлагдсан",
}

_background_tasks: set[asyncio.Task] = set()


def build_notify_settings(shop: Shop) -> dict[str, bool]:
    """Per-event switches; unset flags count as enabled."""
    return {event: getattr(shop, attr) is not False for event, attr in NOTIFY_FLAGS.items()}


def format_notification(shop_name: str, event: str, payload: dict) -> str:
    lines = [f"<b>{EVENT_TITLES.get(event, event)}</b>", html.escape(shop_name or "")]
    for key, value in payload.items():
        if value is None or value == "":
            continue
        if isinstance(value, list):
            value = ", ".join(str(item) for item in value)
        lines.append(f"{html.escape(str(key))}: {html.escape(str(value))}")
    return "\n".join(lines)


async def deliver_notification(chat_id: Optional[str], text: str) -> bool:
    try:
        result = await send_telegram_message(settings.notify_bot_token, chat_id, text)
    except Exception as exc:
        logger.error("Staff notification crashed", extra={"context": {"error": str(exc)}})
        return False
    if not result.ok:
        logger.warning("Staff notification not delivered", extra={"context": {"error": result.error}})
    return result.ok


def schedule_notification(shop: Shop, event: str, payload: dict) -> bool:
    """Queue a staff notification if the shop wants this event. Returns True when scheduled."""
    if event not in NOTIFY_FLAGS:
        logger.warning(f"Unknown notification event: {event}")
        return False
    if not build_notify_settings(shop)[event]:
        return False
    if not shop.notification_chat_id:
        logger.info(
            "Shop has no notification chat",
            extra={"context": {"shop_id": str(shop.id), "event": event}},
        )
        return False

    # Snapshot everything now; the ORM row may be expired by the time the task runs.
    text = format_notification(shop.name, event, payload)
    chat_id = shop.notification_chat_id

    try:
        task = asyncio.get_running_loop().create_task(deliver_notification(chat_id, text))
    except RuntimeError:
        logger.warning("No running event loop for staff notification", extra={"context": {"event": event}})
        return False
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return True
