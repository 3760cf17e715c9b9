import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from syncly.config import settings
from syncly.models import ChatHistoryEntry, Customer, Order, PendingMessage
from syncly.services import pipeline_service
from syncly.services.cart_service import add_to_cart
from syncly.services.fallback_service import FALLBACK_TEMPLATES
from syncly.services.intent_service import Intent
from syncly.services.llm import LLMProviderError, LLMResponse, ToolCall
from syncly.services.pipeline_service import handle_event, run_sweep
from syncly.services.queue_service import fetch_ready_batches
from syncly.services.transport import EventKind, NormalizedEvent, Platform


def _event(text=None, kind=EventKind.TEXT, sender_id="user-1", attachment_url=None, payload=None, account_id="page-1"):
    return NormalizedEvent(
        platform=Platform.MESSENGER,
        account_id=account_id,
        sender_id=sender_id,
        kind=kind,
        text=text,
        attachment_url=attachment_url,
        postback_payload=payload,
        message_id=f"m-{uuid.uuid4().hex[:8]}",
    )


def _history(db):
    return db.query(ChatHistoryEntry).order_by(ChatHistoryEntry.created_at.asc()).all()


@pytest.fixture
def direct(fast_pipeline, monkeypatch):
    """Reply inline instead of queueing."""
    monkeypatch.setattr(settings, "batching_enabled", False)


@pytest.fixture
def instant_batches(fast_pipeline, monkeypatch):
    monkeypatch.setattr(settings, "quiet_window_seconds", 0)


async def _drain_background_tasks():
    if pipeline_service._background_tasks:
        await asyncio.gather(*list(pipeline_service._background_tasks), return_exceptions=True)


class TestDirectReplies:
    @pytest.mark.asyncio
    async def test_greeting_gets_one_reply_and_one_history_row(self, db, shop, direct, graph_api, llm, sent_messages):
        status = await handle_event(db, _event("Сайн байна уу"))

        assert status == "replied"
        bodies = sent_messages()
        assert len(bodies) == 1
        assert bodies[0]["recipient"] == {"id": "user-1"}
        assert bodies[0]["message"]["text"] == "Сайн байна уу! Танд юугаар туслах вэ?"
        history = _history(db)
        assert len(history) == 1
        assert history[0].intent == Intent.GREETING.value
        assert history[0].message == "Сайн байна уу"
        db.refresh(shop)
        assert shop.ai_messages_this_month == 1
        assert db.query(Customer).count() == 1

    @pytest.mark.asyncio
    async def test_product_photo_gets_image_then_card(self, db, shop, product, direct, graph_api, llm, sent_messages):
        llm.generate.return_value = LLMResponse(
            content=json.dumps({"matched_product": "Цамц", "confidence": 0.93, "description": "Цагаан цамц"}),
            model="gpt-5-mini",
        )

        status = await handle_event(
            db, _event(kind=EventKind.ATTACHMENT, attachment_url="https://cdn.fb/photo.jpg")
        )

        assert status == "replied"
        image_body, text_body = sent_messages()
        assert image_body["message"]["attachment"]["payload"]["url"] == "https://cdn.example.com/tsamts.jpg"
        text = text_body["message"]["text"]
        assert "Цамц" in text
        assert "35,000₮" in text
        assert "Үлдэгдэл: 10 ширхэг" in text
        assert text_body["message"]["quick_replies"][0]["payload"] == f"ORDER_{product.id}"
        assert _history(db)[0].message == "[1 зураг]"

    @pytest.mark.asyncio
    async def test_phone_in_message_is_captured(self, db, shop, customer, direct, graph_api, llm):
        await handle_event(db, _event("Миний утас 99112233"))
        db.refresh(customer)
        assert customer.phone == "99112233"

    @pytest.mark.asyncio
    async def test_history_window_is_sent_to_model(self, db, shop, customer, direct, graph_api, llm):
        await handle_event(db, _event("Сайн байна уу"))
        await handle_event(db, _event("Цамц байгаа юу?"))

        messages = llm.generate.call_args.kwargs["messages"]
        assert messages[1:] == [
            {"role": "user", "content": "Сайн байна уу"},
            {"role": "assistant", "content": "Сайн байна уу! Танд юугаар туслах вэ?"},
            {"role": "user", "content": "Цамц байгаа юу?"},
        ]


class TestGates:
    @pytest.mark.asyncio
    async def test_disabled_ai_sends_nothing(self, db, shop, direct, graph_api, llm):
        shop.is_ai_active = False
        db.commit()

        status = await handle_event(db, _event("Сайн байна уу"))

        assert status == "ai_disabled"
        graph_api.assert_not_awaited()
        llm.generate.assert_not_awaited()
        assert _history(db) == []
        assert db.query(Customer).count() == 0

    @pytest.mark.asyncio
    async def test_missing_token_sends_nothing(self, db, shop, direct, graph_api, llm, monkeypatch):
        monkeypatch.setattr(settings, "facebook_page_access_token", None)
        shop.facebook_page_access_token = None
        db.commit()

        assert await handle_event(db, _event("hi")) == "no_access_token"
        graph_api.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pause_is_respected_until_it_expires(self, db, shop, customer, direct, graph_api, llm):
        customer.ai_paused_until = datetime.now(timezone.utc) + timedelta(hours=1)
        db.commit()

        assert await handle_event(db, _event("Сайн байна уу")) == "ai_paused"
        graph_api.assert_not_awaited()
        llm.generate.assert_not_awaited()

        customer.ai_paused_until = datetime.now(timezone.utc) - timedelta(seconds=1)
        db.commit()

        assert await handle_event(db, _event("Сайн байна уу")) == "replied"

    @pytest.mark.asyncio
    async def test_unknown_page(self, db, shop, direct, graph_api, llm):
        assert await handle_event(db, _event("hi", account_id="page-404")) == "no_shop"
        graph_api.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_own_message(self, db, shop, direct, graph_api, llm):
        assert await handle_event(db, _event("hi", sender_id="page-1")) == "own_message"

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, db, shop, direct, graph_api, llm):
        with patch.object(pipeline_service, "is_duplicate_message", new_callable=AsyncMock, return_value=True):
            assert await handle_event(db, _event("hi")) == "duplicate"
        llm.generate.assert_not_awaited()


class TestFallback:
    @pytest.mark.asyncio
    async def test_provider_error_sends_intent_fallback(self, db, shop, direct, graph_api, llm, sent_messages):
        llm.generate.side_effect = LLMProviderError("upstream down", status_code=503)

        with patch.object(pipeline_service.alert_service, "alert_error", new_callable=AsyncMock) as mock_alert:
            status = await handle_event(db, _event("Баярлалаа"))
            await _drain_background_tasks()

        expected = FALLBACK_TEMPLATES[Intent.THANK_YOU].format(shop="Acme")
        assert status == "fallback"
        assert sent_messages()[0]["message"]["text"] == expected
        history = _history(db)
        assert len(history) == 1
        assert history[0].intent == Intent.THANK_YOU.value
        assert history[0].response == expected
        mock_alert.assert_awaited_once()
        db.refresh(shop)
        assert shop.ai_messages_this_month == 0

    @pytest.mark.asyncio
    async def test_timeout_sends_fallback(self, db, shop, direct, graph_api, llm, sent_messages, monkeypatch):
        monkeypatch.setattr(settings, "ai_timeout_seconds", 0.05)

        async def _slow(**kwargs):
            await asyncio.sleep(1)

        llm.generate.side_effect = _slow

        with patch.object(pipeline_service.alert_service, "alert_error", new_callable=AsyncMock):
            status = await handle_event(db, _event("Сайн байна уу"))
            await _drain_background_tasks()

        assert status == "fallback"
        assert sent_messages()[0]["message"]["text"] == FALLBACK_TEMPLATES[Intent.GREETING].format(shop="Acme")

    @pytest.mark.asyncio
    async def test_empty_ai_text_sends_fallback(self, db, shop, product, direct, graph_api, llm, sent_messages):
        llm.generate.return_value = LLMResponse(content="  ", model="gpt-5-mini")

        with patch.object(pipeline_service.alert_service, "alert_error", new_callable=AsyncMock):
            status = await handle_event(db, _event("Ямар бараа байна?"))
            await _drain_background_tasks()

        assert status == "fallback"
        assert "• Цамц (35,000₮)" in sent_messages()[0]["message"]["text"]

    @pytest.mark.asyncio
    async def test_send_failure_still_records_turn(self, db, shop, direct, graph_api, llm):
        from syncly.services.result import Result

        graph_api.return_value = Result.failure("Graph API error: 500")

        assert await handle_event(db, _event("Сайн байна уу")) == "replied"
        assert len(_history(db)) == 1


class TestPostbacks:
    @pytest.mark.asyncio
    async def test_order_button_asks_quantity(self, db, shop, customer, product, direct, graph_api, llm, sent_messages):
        status = await handle_event(db, _event("Захиалах", kind=EventKind.POSTBACK, payload=f"ORDER_{product.id}"))

        assert status == "postback_answered"
        llm.generate.assert_not_awaited()
        body = sent_messages()[0]["message"]
        assert body["text"] == "Цамц хэдэн ширхэг авах вэ?"
        assert [reply["payload"] for reply in body["quick_replies"]] == [
            f"QTY_{n}_{product.id}" for n in (1, 2, 3)
        ]
        assert _history(db)[0].intent == Intent.ORDER_CREATE.value

    @pytest.mark.asyncio
    async def test_quantity_choice_becomes_order_text(self, db, shop, customer, product, direct, graph_api, llm):
        status = await handle_event(db, _event("2 ширхэг", payload=f"QTY_2_{product.id}"))

        assert status == "replied"
        assert llm.generate.call_args.kwargs["messages"][-1] == {"role": "user", "content": "Цамц 2 ширхэг авъя"}

    @pytest.mark.asyncio
    async def test_confirm_button(self, db, shop, customer, product, direct, graph_api, llm):
        await handle_event(db, _event("Энэ мөн", kind=EventKind.POSTBACK, payload="CONFIRM_Цамц"))
        assert llm.generate.call_args.kwargs["messages"][-1]["content"] == "Цамц авъя"

    @pytest.mark.asyncio
    async def test_unknown_payload_uses_button_title(self, db, shop, customer, direct, graph_api, llm):
        await handle_event(db, _event("🛒 Сагс харах", kind=EventKind.POSTBACK, payload="VIEW_CART"))
        assert llm.generate.call_args.kwargs["messages"][-1]["content"] == "🛒 Сагс харах"


class TestBatching:
    @pytest.mark.asyncio
    async def test_live_path_only_queues(self, db, shop, fast_pipeline, graph_api, llm):
        assert await handle_event(db, _event("Сайн уу")) == "queued"

        llm.generate.assert_not_awaited()
        row = db.query(PendingMessage).one()
        assert row.content == "Сайн уу"
        assert row.access_token == "page-token"

    @pytest.mark.asyncio
    async def test_burst_becomes_one_reply(self, db, shop, instant_batches, graph_api, llm, sent_messages):
        for text in ("Сайн уу", "цамц байгаа юу", "хэд вэ"):
            assert await handle_event(db, _event(text)) == "queued"

        first = await run_sweep(db)
        second = await run_sweep(db)

        assert first == {"processed": 3, "batches": 1}
        assert second == {"processed": 0, "batches": 0}
        assert llm.generate.await_count == 1
        assert llm.generate.call_args.kwargs["messages"][-1]["content"] == "Сайн уу цамц байгаа юу хэд вэ"
        assert len(sent_messages()) == 1
        history = _history(db)
        assert len(history) == 1
        assert history[0].message == "Сайн уу цамц байгаа юу хэд вэ"

    @pytest.mark.asyncio
    async def test_settling_batch_is_left_for_later(self, db, shop, fast_pipeline, graph_api, llm):
        await handle_event(db, _event("Сайн уу"))

        assert await run_sweep(db) == {"processed": 0, "batches": 0}
        llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pause_after_queueing_drops_batch(self, db, shop, customer, instant_batches, graph_api, llm, sent_messages):
        await handle_event(db, _event("Сайн уу"))
        customer.ai_paused_until = datetime.now(timezone.utc) + timedelta(hours=1)
        db.commit()

        result = await run_sweep(db)

        assert result == {"processed": 1, "batches": 1}
        llm.generate.assert_not_awaited()
        assert sent_messages() == []
        assert _history(db) == []
        assert db.query(PendingMessage).filter(PendingMessage.processed.is_(False)).count() == 0

    @pytest.mark.asyncio
    async def test_senders_are_batched_separately(self, db, shop, instant_batches, graph_api, llm):
        await handle_event(db, _event("Сайн уу", sender_id="user-1"))
        await handle_event(db, _event("Сайн уу", sender_id="user-2"))

        assert await run_sweep(db) == {"processed": 2, "batches": 2}
        assert llm.generate.await_count == 2
        assert len(_history(db)) == 2


class TestStarterPlan:
    @pytest.mark.asyncio
    async def test_starter_shop_recognizes_product_photo(self, db, shop, product, direct, graph_api, llm, sent_messages):
        shop.subscription_plan = "starter"
        db.commit()
        llm.generate.return_value = LLMResponse(
            content=json.dumps({"matched_product": "Цамц", "confidence": 0.9}),
            model="gpt-5-nano",
        )

        status = await handle_event(db, _event(kind=EventKind.ATTACHMENT, attachment_url="https://cdn.fb/photo.jpg"))

        assert status == "replied"
        assert llm.generate.call_args.kwargs["model"] == "gpt-5-nano"
        text = sent_messages()[-1]["message"]["text"]
        assert "Цамц" in text
        assert "35,000₮" in text


class TestToolResultsSurviveFollowUpFailure:
    @pytest.mark.asyncio
    async def test_checkout_confirmation_is_sent_when_follow_up_fails(
        self, db, shop, customer, product, direct, graph_api, llm, sent_messages
    ):
        add_to_cart(db, shop_id=shop.id, customer_id=customer.id, product_name="Цамц", quantity=2)
        llm.generate.side_effect = [
            LLMResponse(content="", model="gpt-5-mini", tool_calls=[ToolCall(id="call_1", name="checkout")]),
            LLMProviderError("bad request", status_code=400),
        ]

        status = await handle_event(db, _event("Захиалъя"))

        assert status == "replied"
        assert db.query(Order).count() == 1
        text = sent_messages()[0]["message"]["text"]
        assert text.startswith("✅ Захиалга үүслээ! Нийт: 70,000₮")
        assert _history(db)[0].response == text


class TestTurnTiming:
    @pytest.mark.asyncio
    async def test_fallback_waits_for_minimum_reply_delay(self, db, shop, direct, graph_api, llm, monkeypatch):
        monkeypatch.setattr(settings, "min_reply_delay_seconds", 0.2)
        llm.generate.side_effect = LLMProviderError("upstream down", status_code=503)
        loop = asyncio.get_running_loop()

        with patch.object(pipeline_service.alert_service, "alert_error", new_callable=AsyncMock):
            started = loop.time()
            status = await handle_event(db, _event("Сайн байна уу"))
            elapsed = loop.time() - started
            await _drain_background_tasks()

        assert status == "fallback"
        assert elapsed >= 0.2

    @pytest.mark.asyncio
    async def test_new_customer_profile_is_fetched_once(self, db, shop, direct, graph_api, llm):
        from syncly.services.result import Result

        graph_api.return_value = Result.failure("Graph API error: 400")

        await handle_event(db, _event("Сайн байна уу", sender_id="user-9"))

        profile_calls = [call for call in graph_api.call_args_list if call.args[0] == "GET"]
        assert len(profile_calls) == 1
        assert db.query(Customer).filter(Customer.platform_user_id == "user-9").one().name is None


class TestOverlappingSweeps:
    @pytest.mark.asyncio
    async def test_concurrent_sweeps_reply_once(self, db, session_factory, shop, instant_batches, graph_api, llm, sent_messages):
        for text in ("Сайн уу", "цамц байгаа юу", "хэд вэ"):
            await handle_event(db, _event(text))

        other = session_factory()
        # The second sweep read the same rows before either sweep claimed them.
        stale = fetch_ready_batches(other)
        real_fetch = pipeline_service.fetch_ready_batches

        def _fetch(session, **kwargs):
            return stale if session is other else real_fetch(session, **kwargs)

        async def _slow_reply(**kwargs):
            await asyncio.sleep(0.05)
            return LLMResponse(content="Сайн байна уу!", model="gpt-5-mini")

        llm.generate.side_effect = _slow_reply

        try:
            with patch.object(pipeline_service, "fetch_ready_batches", side_effect=_fetch):
                results = await asyncio.gather(run_sweep(db), run_sweep(other))
        finally:
            other.close()

        assert sorted(result["processed"] for result in results) == [0, 3]
        assert sum(result["batches"] for result in results) == 1
        assert llm.generate.await_count == 1
        assert len(sent_messages()) == 1
        assert len(_history(db)) == 1
