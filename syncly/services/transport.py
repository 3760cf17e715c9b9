"""Normalized inbound/outbound message model for Messenger and Instagram."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from syncly.logging_config import get_logger
from syncly.schemas.webhook import MetaMessagingEvent, MetaWebhookPayload

logger = get_logger("transport")

# Webhook ``object`` values accepted on POST.
SUPPORTED_OBJECTS = {"page", "instagram"}

COMMENT_FIELDS = {"feed", "comments"}


class Platform(str, Enum):
    MESSENGER = "messenger"
    INSTAGRAM = "instagram"


class EventKind(str, Enum):
    TEXT = "text"
    ATTACHMENT = "attachment"
    POSTBACK = "postback"


@dataclass
class NormalizedEvent:
    platform: Platform
    account_id: str
    sender_id: str
    kind: EventKind
    text: Optional[str] = None
    attachment_url: Optional[str] = None
    postback_payload: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[int] = None
    # Filled by the resolver once the shop is known.
    access_token: Optional[str] = None


@dataclass
class CommentEvent:
    platform: Platform
    account_id: str
    comment_id: str
    commenter_id: Optional[str]
    commenter_name: Optional[str]
    text: str
    post_id: Optional[str] = None


@dataclass
class QuickReply:
    title: str
    payload: str


@dataclass
class ProductCard:
    name: str
    price: int
    image_url: str
    description: Optional[str] = None
    product_id: Optional[str] = None


@dataclass
class ImageAction:
    type: str  # single, multiple, confirm
    products: list[ProductCard] = field(default_factory=list)


def platform_for_object(object_type: str) -> Platform:
    return Platform.INSTAGRAM if object_type == "instagram" else Platform.MESSENGER


def _normalize_messaging(platform: Platform, account_id: str, item: MetaMessagingEvent) -> NormalizedEvent | None:
    sender_id = item.sender.id
    if item.postback is not None:
        return NormalizedEvent(
            platform=platform,
            account_id=account_id,
            sender_id=sender_id,
            kind=EventKind.POSTBACK,
            text=item.postback.title,
            postback_payload=item.postback.payload,
            message_id=item.postback.mid,
            timestamp=item.timestamp,
        )

    message = item.message
    if message is None or message.is_echo:
        return None

    image_url = next(
        (
            attachment.payload.url
            for attachment in message.attachments
            if attachment.type == "image" and attachment.payload and attachment.payload.url
        ),
        None,
    )
    if image_url:
        return NormalizedEvent(
            platform=platform,
            account_id=account_id,
            sender_id=sender_id,
            kind=EventKind.ATTACHMENT,
            text=message.text,
            attachment_url=image_url,
            message_id=message.mid,
            timestamp=item.timestamp,
        )

    text = (message.text or "").strip()
    if not text:
        return None

    return NormalizedEvent(
        platform=platform,
        account_id=account_id,
        sender_id=sender_id,
        kind=EventKind.TEXT,
        text=text,
        postback_payload=message.quick_reply.payload if message.quick_reply else None,
        message_id=message.mid,
        timestamp=item.timestamp,
    )


def normalize_webhook(payload: MetaWebhookPayload) -> tuple[list[NormalizedEvent], list[CommentEvent]]:
    """Flatten a Meta webhook delivery into message events and feed comments.

    Echoes of the page's own messages, delivery/read receipts and
    attachments that are not images are dropped here.
    """
    platform = platform_for_object(payload.object)
    events: list[NormalizedEvent] = []
    comments: list[CommentEvent] = []

    for entry in payload.entry:
        for item in entry.messaging:
            event = _normalize_messaging(platform, entry.id, item)
            if event is not None:
                events.append(event)

        for change in entry.changes:
            value = change.value
            if change.field not in COMMENT_FIELDS:
                continue
            if change.field == "feed" and (value.item != "comment" or value.verb not in (None, "add")):
                continue
            if not value.comment_id or not (value.message or "").strip():
                continue
            comments.append(
                CommentEvent(
                    platform=platform,
                    account_id=entry.id,
                    comment_id=value.comment_id,
                    commenter_id=value.sender.id if value.sender else None,
                    commenter_name=(value.sender.name or value.sender.username) if value.sender else None,
                    text=value.message.strip(),
                    post_id=value.post_id,
                )
            )

    if not events and not comments:
        logger.debug("Webhook delivery had no actionable items", extra={"context": {"object": payload.object}})
    return events, comments
