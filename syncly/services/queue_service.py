"""Pending-message queue that coalesces rapid-fire messages into one turn.

Every inbound message is stored with ``process_after = now + quiet window``.
A sweep picks up (shop, sender) groups whose newest message has settled,
claims them with one conditional UPDATE, and only then hands the merged
text to the AI.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from syncly.config import settings
from syncly.logging_config import get_logger
from syncly.models import PendingMessage
from syncly.models.types import as_utc
from syncly.services.transport import Platform

logger = get_logger("queue_service")

BatchKey = tuple[str, str]


@dataclass
class MergedTurn:
    shop_id: object
    customer_id: object
    sender_id: str
    platform: Platform
    text: str
    image_urls: list[str] = field(default_factory=list)
    access_token: Optional[str] = None
    message_ids: list = field(default_factory=list)


def enqueue_pending_message(
    db: Session,
    *,
    shop_id,
    customer_id,
    sender_id: str,
    platform: Platform,
    content: Optional[str] = None,
    image_url: Optional[str] = None,
    access_token: Optional[str] = None,
    now: Optional[datetime] = None,
    quiet_window_seconds: Optional[float] = None,
) -> PendingMessage:
    now = now or datetime.now(timezone.utc)
    window = settings.quiet_window_seconds if quiet_window_seconds is None else quiet_window_seconds
    row = PendingMessage(
        shop_id=shop_id,
        customer_id=customer_id,
        sender_id=sender_id,
        platform=platform.value,
        message_type="image" if image_url else "text",
        content=content,
        image_url=image_url,
        access_token=access_token,
        processed=False,
        process_after=now + timedelta(seconds=window),
        created_at=now,
    )
    db.add(row)
    db.commit()
    return row


def group_batches(rows: Iterable[PendingMessage]) -> "OrderedDict[BatchKey, list[PendingMessage]]":
    """Group rows by (shop, sender), keeping arrival order inside each group."""
    ordered = sorted(rows, key=lambda row: as_utc(row.created_at))
    groups: OrderedDict[BatchKey, list[PendingMessage]] = OrderedDict()
    for row in ordered:
        groups.setdefault((str(row.shop_id), row.sender_id), []).append(row)
    return groups


def fetch_ready_batches(
    db: Session,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
    max_wait_seconds: Optional[float] = None,
) -> list[list[PendingMessage]]:
    """Unprocessed groups whose newest message's quiet window has elapsed.

    A sender still typing (newest ``process_after`` in the future) is left
    for a later sweep so the whole burst lands in one turn, unless the
    oldest message has already waited ``max_wait_seconds``.
    """
    now = now or datetime.now(timezone.utc)
    limit = limit or settings.sweep_batch_limit
    max_wait = timedelta(
        seconds=settings.max_batch_wait_seconds if max_wait_seconds is None else max_wait_seconds
    )
    rows = (
        db.query(PendingMessage)
        .filter(PendingMessage.processed.is_(False))
        .order_by(PendingMessage.created_at.asc())
        .limit(limit)
        .all()
    )
    groups = group_batches(rows)
    if len(rows) == limit and len(groups) > 1:
        # The last sender's burst may continue past the page; take it next sweep.
        truncated_key = (str(rows[-1].shop_id), rows[-1].sender_id)
        groups.pop(truncated_key, None)

    batches = []
    for group in groups.values():
        settled_at = max(as_utc(row.process_after) for row in group)
        waited_since = min(as_utc(row.created_at) for row in group)
        if settled_at <= now or waited_since + max_wait <= now:
            batches.append(group)
    return batches


def claim_batch(db: Session, message_ids: list) -> list:
    """Atomically flip ``processed`` for the given ids.

    Returns only the ids this call flipped. Rows already claimed by an
    overlapping sweep are excluded, so an empty list means someone else
    owns the batch.
    """
    if not message_ids:
        return []
    stmt = (
        update(PendingMessage)
        .where(PendingMessage.id.in_(message_ids), PendingMessage.processed.is_(False))
        .values(processed=True)
        .returning(PendingMessage.id)
        .execution_options(synchronize_session=False)
    )
    claimed = [row[0] for row in db.execute(stmt).all()]
    db.commit()
    if len(claimed) != len(message_ids):
        logger.info(
            "Batch partially claimed elsewhere",
            extra={"context": {"requested": len(message_ids), "claimed": len(claimed)}},
        )
    return claimed


def merge_batch(messages: list[PendingMessage]) -> MergedTurn:
    ordered = sorted(messages, key=lambda row: as_utc(row.created_at))
    texts = [row.content.strip() for row in ordered if row.content and row.content.strip()]
    image_urls = [row.image_url for row in ordered if row.image_url]
    newest = ordered[-1]
    access_token = next((row.access_token for row in reversed(ordered) if row.access_token), None)
    return MergedTurn(
        shop_id=newest.shop_id,
        customer_id=newest.customer_id,
        sender_id=newest.sender_id,
        platform=Platform(newest.platform),
        text=" ".join(texts),
        image_urls=image_urls,
        access_token=access_token,
        message_ids=[row.id for row in ordered],
    )


def purge_processed(db: Session, *, older_than: Optional[datetime] = None) -> int:
    older_than = older_than or datetime.now(timezone.utc) - timedelta(seconds=settings.pending_retention_seconds)
    result = db.execute(
        delete(PendingMessage)
        .where(PendingMessage.processed.is_(True), PendingMessage.created_at < older_than)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0
