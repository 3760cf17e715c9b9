import pytest

from syncly.services.context_service import AIProduct
from syncly.services.fallback_service import FALLBACK_TEMPLATES, generate_fallback_response
from syncly.services.intent_service import Intent


def _product(name, price, discounted=None):
    return AIProduct(id=name, name=name, price=price, discounted_price=discounted or price, stock=5)


PRODUCTS = [
    _product("Цамц", 35000),
    _product("Малгай", 15000, 12000),
    _product("Өмд", 55000),
    _product("Гутал", 90000),
]


class TestGenerateFallbackResponse:
    def test_greeting_mentions_shop(self):
        text = generate_fallback_response(Intent.GREETING, "Acme")
        assert "Acme" in text
        assert text == FALLBACK_TEMPLATES[Intent.GREETING].format(shop="Acme")

    def test_is_deterministic(self):
        first = generate_fallback_response(Intent.COMPLAINT, "Acme", PRODUCTS)
        second = generate_fallback_response(Intent.COMPLAINT, "Acme", PRODUCTS)
        assert first == second

    @pytest.mark.parametrize("intent", [Intent.PRODUCT_INQUIRY, Intent.STOCK_CHECK])
    def test_lists_at_most_three_products(self, intent):
        text = generate_fallback_response(intent, "Acme", PRODUCTS)

        assert "• Цамц (35,000₮)" in text
        assert "• Малгай (12,000₮)" in text
        assert "• Өмд (55,000₮)" in text
        assert "Гутал" not in text

    def test_product_question_with_empty_catalog(self):
        text = generate_fallback_response(Intent.PRODUCT_INQUIRY, "Acme", [])
        assert "бараа бүртгэгдээгүй" in text

    def test_unknown_intent_uses_generic_reply(self):
        assert generate_fallback_response("SOMETHING_NEW", "Acme") == generate_fallback_response(Intent.OTHER, "Acme")

    def test_intent_as_string(self):
        assert generate_fallback_response("THANK_YOU", "Acme") == generate_fallback_response(Intent.THANK_YOU, "Acme")

    def test_missing_shop_name(self):
        assert "Манай дэлгүүр" in generate_fallback_response(Intent.GREETING, None)

    def test_every_intent_has_a_reply(self):
        for intent in Intent:
            assert generate_fallback_response(intent, "Acme", PRODUCTS)
