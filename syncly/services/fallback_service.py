"""Canned replies used whenever the AI path cannot produce an answer."""

from typing import Iterable, Optional, Union

from syncly.services.context_service import AIProduct
from syncly.services.intent_service import Intent
from syncly.services.messenger_service import format_price

MAX_LISTED_PRODUCTS = 3

FALLBACK_TEMPLATES = {
    Intent.GREETING: "Сайн байна уу! {shop}-д тавтай морил 😊 Танд юугаар туслах вэ?",
    Intent.PRICE_CHECK: "Та аль барааны үнийг сонирхож байна вэ? Барааны нэрийг бичээрэй, {shop} танд үнийг хэлье.",
    Intent.ORDER_CREATE: "Захиалга өгөхийн тулд барааны нэр, тоо ширхэгээ бичээрэй. {shop} удахгүй хариулна.",
    Intent.ORDER_STATUS: "Таны захиалгын талаар {shop}-ын ажилтан удахгүй мэдээлэл өгнө.",
    Intent.COMPLAINT: "Уучлаарай, танд таагүй байдал үүссэнд харамсаж байна. {shop}-ын ажилтан тантай удахгүй холбогдоно.",
    Intent.THANK_YOU: "Баярлалаа! {shop}-г сонгосонд талархаж байна 🙏",
    Intent.OTHER: "Таны зурвасыг хүлээн авлаа. {shop}-ын ажилтан удахгүй хариулна.",
}

PRODUCT_LIST_HEADER = "{shop}-д дараах бараанууд байна:"
EMPTY_CATALOG_TEXT = "Одоогоор {shop}-д бараа бүртгэгдээгүй байна. Ажилтан удахгүй хариулна."


def _product_line(product: AIProduct) -> str:
    return f"• {product.name} ({format_price(product.discounted_price)})"


def generate_fallback_response(
    intent: Union[Intent, str],
    shop_name: Optional[str],
    products: Iterable[AIProduct] = (),
) -> str:
    """Deterministic reply for an intent. Product and stock questions list up to three items."""
    try:
        intent = Intent(intent)
    except ValueError:
        intent = Intent.OTHER
    shop = shop_name or "Манай дэлгүүр"

    if intent in (Intent.PRODUCT_INQUIRY, Intent.STOCK_CHECK):
        listed = list(products)[:MAX_LISTED_PRODUCTS]
        if not listed:
            return EMPTY_CATALOG_TEXT.format(shop=shop)
        lines = [PRODUCT_LIST_HEADER.format(shop=shop)]
        lines.extend(_product_line(product) for product in listed)
        lines.append("Аль нь таны сонирхлыг татаж байна вэ?")
        return "\n".join(lines)

    return FALLBACK_TEMPLATES[intent].format(shop=shop)
