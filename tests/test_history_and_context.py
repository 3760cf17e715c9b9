from datetime import datetime, timedelta, timezone

from syncly.models import ShopFaq, ShopQuickReply
from syncly.services.context_service import build_chat_context
from syncly.services.history_service import (
    get_chat_history,
    increment_message_count,
    monthly_usage,
    save_chat_history,
)

NOW = datetime(2026, 3, 10, tzinfo=timezone.utc)


class TestChatHistory:
    def test_returns_last_turns_oldest_first(self, db, shop, customer):
        for i in range(7):
            save_chat_history(db, shop_id=shop.id, customer_id=customer.id, message=f"q{i}", response=f"a{i}")

        history = get_chat_history(db, shop.id, customer.id, limit=3)

        assert [item["content"] for item in history] == ["q4", "a4", "q5", "a5", "q6", "a6"]
        assert [item["role"] for item in history[:2]] == ["user", "assistant"]

    def test_scoped_to_customer(self, db, shop, customer):
        save_chat_history(db, shop_id=shop.id, customer_id=None, message="comment", response="reply")
        assert get_chat_history(db, shop.id, customer.id) == []


class TestMessageCounters:
    def test_increment_counts_customer_and_shop(self, db, shop, customer):
        increment_message_count(db, customer, shop, now=NOW)
        increment_message_count(db, customer, shop, now=NOW)

        assert customer.message_count == 2
        assert monthly_usage(shop, NOW) == 2

    def test_usage_resets_each_month(self, db, shop, customer):
        increment_message_count(db, customer, shop, now=NOW)
        next_month = NOW + timedelta(days=31)

        assert monthly_usage(shop, next_month) == 0
        increment_message_count(db, customer, shop, now=next_month)
        assert shop.ai_messages_this_month == 1


class TestBuildChatContext:
    def test_collects_shop_scoped_data(self, db, shop, customer, product):
        db.add(ShopFaq(shop_id=shop.id, question="Хүргэлт хэд хоног вэ?", answer="1-2 хоног"))
        db.add(ShopQuickReply(shop_id=shop.id, name="hours", trigger_words=["цаг"], response="10-20 цаг"))
        shop.policies = {"shipping": "УБ дотор үнэгүй"}
        customer.ai_memory = {"size": "M"}
        db.commit()

        ctx = build_chat_context(db, shop, customer, now=NOW)

        assert ctx.plan.name == "pro"
        assert [product.name for product in ctx.products] == ["Цамц"]
        assert ctx.products[0].stock == 10
        assert ctx.faqs == [{"question": "Хүргэлт хэд хоног вэ?", "answer": "1-2 хоног"}]
        assert ctx.quick_replies[0]["trigger_words"] == ["цаг"]
        assert ctx.policies == {"shipping": "УБ дотор үнэгүй"}
        assert ctx.customer_memory == {"size": "M"}
        assert ctx.notify_settings["order"] is True

    def test_plan_is_resolved_per_call(self, db, shop, customer):
        assert build_chat_context(db, shop, customer, now=NOW).plan.name == "pro"
        shop.subscription_status = "past_due"
        db.commit()
        assert build_chat_context(db, shop, customer, now=NOW).plan.name == "starter"

    def test_memory_hidden_on_plans_without_memory(self, db, shop, customer):
        shop.subscription_plan = "starter"
        customer.ai_memory = {"size": "M"}
        db.commit()
        assert build_chat_context(db, shop, customer, now=NOW).customer_memory == {}

    def test_available_stock_excludes_reservations(self, db, shop, customer, product):
        product.reserved_stock = 4
        db.commit()
        assert build_chat_context(db, shop, customer, now=NOW).products[0].stock == 6
