"""Single inbound pipeline shared by the live webhook path and the batch sweep.

Live:   event -> shop -> customer -> gates -> (enqueue | process_turn)
Sweep:  ready batches -> claim -> merge -> gates -> process_turn
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from syncly.config import settings
from syncly.logging_config import get_turn_logger
from syncly.models import Customer, Product, Shop
from syncly.services import alert_service
from syncly.services.ai_service import ChatResponse, analyze_product_image, build_image_reply, route_to_ai
from syncly.services.cart_service import find_product
from syncly.services.context_service import ChatContext, build_chat_context, load_products
from syncly.services.customer_service import (
    find_customer,
    get_access_token,
    get_or_create_customer,
    resolve_shop,
    update_customer_info,
)
from syncly.services.dedup_service import is_duplicate_message
from syncly.services.dispatch_service import dispatch_reply, send_presence
from syncly.services.fallback_service import generate_fallback_response
from syncly.services.gate_service import evaluate_gates
from syncly.services.history_service import get_chat_history, increment_message_count, save_chat_history
from syncly.services.intent_service import Intent, detect_intent
from syncly.services.messenger_service import MessengerService
from syncly.services.queue_service import (
    MergedTurn,
    claim_batch,
    enqueue_pending_message,
    fetch_ready_batches,
    merge_batch,
    purge_processed,
)
from syncly.services.transport import EventKind, NormalizedEvent, Platform, QuickReply

ORDER_PREFIX = "ORDER_"
QUANTITY_PREFIX = "QTY_"
CONFIRM_PREFIX = "CONFIRM_"
QUANTITY_CHOICES = (1, 2, 3)

_background_tasks: set[asyncio.Task] = set()


class EmptyResponseError(Exception):
    pass


@dataclass
class TurnInput:
    shop: Shop
    customer: Customer
    platform: Platform
    sender_id: str
    access_token: str
    text: str = ""
    image_urls: list[str] = field(default_factory=list)


@dataclass
class TurnOutcome:
    status: str  # replied, fallback, gated, skipped
    reason: Optional[str] = None
    intent: Optional[Intent] = None
    reply_text: Optional[str] = None


def _fire_and_forget(coro) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def _summarize_user_input(text: str, image_urls: list[str]) -> str:
    if image_urls:
        return f"[{len(image_urls)} зураг] {text}".strip()
    return text


def _lookup_product(db: Session, shop_id, key: str) -> Optional[Product]:
    try:
        product_id = uuid.UUID(key)
    except ValueError:
        return find_product(db, shop_id, key)
    return db.query(Product).filter(Product.id == product_id, Product.shop_id == shop_id).first()


async def _generate_reply(turn: TurnInput, ctx: ChatContext) -> ChatResponse:
    parts: list[str] = []
    image_action = None
    quick_replies: list[QuickReply] = []
    limit_reached = False

    for image_url in turn.image_urls:
        image_reply = build_image_reply(await analyze_product_image(image_url, ctx))
        parts.append(image_reply.text)
        image_action = image_action or image_reply.image_action
        quick_replies = image_reply.quick_replies or quick_replies

    if turn.text:
        history = get_chat_history(ctx.db, turn.shop.id, turn.customer.id)
        ai_reply = await route_to_ai(turn.text, ctx, history)
        parts.append(ai_reply.text)
        image_action = ai_reply.image_action or image_action
        quick_replies = ai_reply.quick_replies or quick_replies
        limit_reached = ai_reply.limit_reached

    text = "\n\n".join(part for part in parts if part).strip()
    if not text:
        raise EmptyResponseError("AI returned an empty response")
    return ChatResponse(text=text, image_action=image_action, quick_replies=quick_replies, limit_reached=limit_reached)


async def _generate_with_deadline(turn: TurnInput, ctx: ChatContext) -> ChatResponse:
    """AI work bounded by the timeout, with a floor so replies (fallbacks too) never arrive instantly."""
    floor = asyncio.ensure_future(asyncio.sleep(settings.min_reply_delay_seconds))
    try:
        return await asyncio.wait_for(_generate_reply(turn, ctx), timeout=settings.ai_timeout_seconds)
    finally:
        await floor


def _fallback_products(db: Session, ctx: Optional[ChatContext], shop: Shop) -> list:
    if ctx is not None:
        return ctx.products
    try:
        return load_products(db, shop.id)
    except SQLAlchemyError:
        db.rollback()
        return []


async def process_turn(db: Session, turn: TurnInput) -> TurnOutcome:
    """One logical turn past the gates: AI (or fallback), send, one history row, counters."""
    shop, customer = turn.shop, turn.customer
    log = get_turn_logger("pipeline", shop_id=shop.id, customer_id=customer.id)
    intent = detect_intent(turn.text).intent
    messenger = MessengerService(turn.access_token)

    ctx: Optional[ChatContext] = None
    status = "replied"
    try:
        ctx = build_chat_context(db, shop, customer)
        reply = await _generate_with_deadline(turn, ctx)
    except Exception as exc:
        db.rollback()
        reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else type(exc).__name__
        log.error("AI turn failed, sending fallback", context={"reason": reason, "error": str(exc)}, exc_info=True)
        _fire_and_forget(
            alert_service.alert_error("AI turn failed", {"shop_id": shop.id, "reason": reason, "error": str(exc)[:200]})
        )
        reply = ChatResponse(text=generate_fallback_response(intent, shop.name, _fallback_products(db, ctx, shop)))
        status = "fallback"

    await send_presence(messenger, turn.sender_id, "typing_off")
    outcome = await dispatch_reply(
        messenger,
        turn.sender_id,
        reply.text,
        image_action=reply.image_action,
        quick_replies=reply.quick_replies,
    )
    if not outcome.text_sent:
        log.warning("Reply not delivered to platform", context={"status": status})

    try:
        save_chat_history(
            db,
            shop_id=shop.id,
            customer_id=customer.id,
            message=_summarize_user_input(turn.text, turn.image_urls),
            response=reply.text,
            intent=intent.value,
        )
        if status == "replied" and not reply.limit_reached:
            increment_message_count(db, customer, shop)
    except SQLAlchemyError as exc:
        db.rollback()
        log.error("Failed to record turn", context={"error": str(exc)})

    log.info("Turn completed", context={"status": status, "intent": intent.value})
    return TurnOutcome(status=status, intent=intent, reply_text=reply.text)


async def _handle_postback(
    db: Session,
    shop: Shop,
    customer: Customer,
    messenger: MessengerService,
    event: NormalizedEvent,
) -> Optional[str]:
    """Resolve button payloads. Returns text to continue with, or None when fully answered."""
    payload = event.postback_payload or ""

    if payload.startswith(ORDER_PREFIX):
        product = _lookup_product(db, shop.id, payload[len(ORDER_PREFIX):])
        if product is None:
            return event.text
        prompt = f"{product.name} хэдэн ширхэг авах вэ?"
        await messenger.send_quick_replies(
            event.sender_id,
            prompt,
            [QuickReply(title=f"{n} ширхэг", payload=f"{QUANTITY_PREFIX}{n}_{product.id}") for n in QUANTITY_CHOICES],
        )
        save_chat_history(
            db,
            shop_id=shop.id,
            customer_id=customer.id,
            message=event.text or payload,
            response=prompt,
            intent=Intent.ORDER_CREATE.value,
        )
        return None

    if payload.startswith(QUANTITY_PREFIX):
        quantity, _, key = payload[len(QUANTITY_PREFIX):].partition("_")
        product = _lookup_product(db, shop.id, key) if key else None
        if product is not None and quantity.isdigit():
            return f"{product.name} {quantity} ширхэг авъя"

    if payload.startswith(CONFIRM_PREFIX):
        return f"{payload[len(CONFIRM_PREFIX):]} авъя"

    return event.text


async def handle_event(db: Session, event: NormalizedEvent) -> str:
    """Live webhook path for one normalized event. Returns what happened, for logs and tests."""
    log = get_turn_logger("pipeline", platform=event.platform.value, sender_id=event.sender_id)

    shop = resolve_shop(db, event.platform, event.account_id)
    if shop is None:
        log.warning("No active shop for account", context={"account_id": event.account_id})
        return "no_shop"
    if event.sender_id == event.account_id:
        return "own_message"

    event.access_token = get_access_token(shop, event.platform)
    precheck = evaluate_gates(shop, None, event.access_token)
    if not precheck.allowed:
        log.info("Event gated", context={"shop_id": str(shop.id), "reason": precheck.reason})
        return precheck.reason

    if await is_duplicate_message(shop.id, event.message_id):
        log.info("Duplicate delivery ignored", context={"message_id": event.message_id})
        return "duplicate"

    messenger = MessengerService(event.access_token)
    existing = find_customer(db, shop.id, event.platform, event.sender_id)
    customer = existing or await get_or_create_customer(db, shop, event.platform, event.sender_id, messenger)
    decision = evaluate_gates(shop, customer, event.access_token)
    if not decision.allowed:
        log.info("Event gated", context={"shop_id": str(shop.id), "reason": decision.reason})
        return decision.reason

    text = (event.text or "").strip()
    if event.kind == EventKind.POSTBACK or event.postback_payload:
        text = (await _handle_postback(db, shop, customer, messenger, event) or "").strip()
        if not text:
            return "postback_answered"

    image_urls = [event.attachment_url] if event.attachment_url else []
    if text:
        # A brand-new customer already had its one profile lookup.
        await update_customer_info(db, customer, text, messenger if existing is not None else None)

    await send_presence(messenger, event.sender_id, "mark_seen")

    if settings.batching_enabled:
        enqueue_pending_message(
            db,
            shop_id=shop.id,
            customer_id=customer.id,
            sender_id=event.sender_id,
            platform=event.platform,
            content=text or None,
            image_url=image_urls[0] if image_urls else None,
            access_token=event.access_token,
        )
        return "queued"

    await send_presence(messenger, event.sender_id, "typing_on")
    outcome = await process_turn(
        db,
        TurnInput(
            shop=shop,
            customer=customer,
            platform=event.platform,
            sender_id=event.sender_id,
            access_token=event.access_token,
            text=text,
            image_urls=image_urls,
        ),
    )
    return outcome.status


async def process_batch(db: Session, turn: MergedTurn) -> TurnOutcome:
    """Run a claimed, merged batch. Gated batches are dropped without any reply."""
    log = get_turn_logger("pipeline", shop_id=turn.shop_id, sender_id=turn.sender_id)

    shop = db.get(Shop, turn.shop_id)
    customer = db.get(Customer, turn.customer_id)
    if shop is None or not shop.is_active or customer is None:
        log.warning("Batch owner missing or inactive, dropping")
        return TurnOutcome(status="skipped", reason="no_shop")

    access_token = turn.access_token or get_access_token(shop, turn.platform)
    decision = evaluate_gates(shop, customer, access_token)
    if not decision.allowed:
        log.info("Batch gated", context={"reason": decision.reason, "messages": len(turn.message_ids)})
        return TurnOutcome(status="gated", reason=decision.reason)

    if not turn.text and not turn.image_urls:
        return TurnOutcome(status="skipped", reason="empty")

    await send_presence(MessengerService(access_token), turn.sender_id, "typing_on")
    return await process_turn(
        db,
        TurnInput(
            shop=shop,
            customer=customer,
            platform=turn.platform,
            sender_id=turn.sender_id,
            access_token=access_token,
            text=turn.text,
            image_urls=turn.image_urls,
        ),
    )


async def run_sweep(db: Session) -> dict:
    """Claim and process every settled batch. Returns ``{"processed": N, "batches": M}``."""
    processed = 0
    batches = 0
    sweep_log = get_turn_logger("sweep")

    for group in fetch_ready_batches(db):
        claimed = set(claim_batch(db, [row.id for row in group]))
        if not claimed:
            continue
        rows = [row for row in group if row.id in claimed]
        batches += 1
        processed += len(rows)
        try:
            await process_batch(db, merge_batch(rows))
        except Exception as exc:
            db.rollback()
            sweep_log.error("Batch processing failed", context={"error": str(exc)}, exc_info=True)

    try:
        purged = purge_processed(db)
        if purged:
            sweep_log.info("Purged processed messages", context={"count": purged})
    except SQLAlchemyError as exc:
        db.rollback()
        sweep_log.warning("Purge failed", context={"error": str(exc)})

    return {"processed": processed, "batches": batches}
