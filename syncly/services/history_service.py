from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from syncly.config import settings
from syncly.models import ChatHistoryEntry, Customer, Shop
from syncly.models.types import as_utc


def get_chat_history(db: Session, shop_id, customer_id, limit: Optional[int] = None) -> List[dict]:
    """Last ``limit`` turns as chat messages, oldest first."""
    limit = limit or settings.history_window
    rows = (
        db.query(ChatHistoryEntry)
        .filter(ChatHistoryEntry.shop_id == shop_id, ChatHistoryEntry.customer_id == customer_id)
        .order_by(ChatHistoryEntry.created_at.desc())
        .limit(limit)
        .all()
    )

    # Reverse to get chronological order
    history = []
    for row in reversed(rows):
        history.append({"role": "user", "content": row.message})
        history.append({"role": "assistant", "content": row.response})
    return history


def save_chat_history(
    db: Session,
    *,
    shop_id,
    customer_id,
    message: str,
    response: str,
    intent: Optional[str] = None,
) -> ChatHistoryEntry:
    entry = ChatHistoryEntry(
        shop_id=shop_id,
        customer_id=customer_id,
        message=message,
        response=response,
        intent=intent,
    )
    db.add(entry)
    db.commit()
    return entry


def _same_month(left: Optional[datetime], right: datetime) -> bool:
    left = as_utc(left)
    return left is not None and (left.year, left.month) == (right.year, right.month)


def increment_message_count(db: Session, customer: Customer, shop: Optional[Shop] = None, now: Optional[datetime] = None) -> None:
    """Bump the customer's counter and the shop's monthly AI usage (reset each calendar month)."""
    now = now or datetime.now(timezone.utc)
    customer.message_count = (customer.message_count or 0) + 1
    if shop is not None:
        if not _same_month(shop.ai_usage_reset_at, now):
            shop.ai_messages_this_month = 0
            shop.ai_usage_reset_at = now
        shop.ai_messages_this_month = (shop.ai_messages_this_month or 0) + 1
    db.commit()


def monthly_usage(shop: Shop, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    if not _same_month(shop.ai_usage_reset_at, now):
        return 0
    return shop.ai_messages_this_month or 0
