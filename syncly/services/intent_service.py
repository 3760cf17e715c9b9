import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    GREETING = "GREETING"  # Мэндчилгээ
    PRODUCT_INQUIRY = "PRODUCT_INQUIRY"  # Ямар бараа байгааг асуух
    PRICE_CHECK = "PRICE_CHECK"  # Үнэ асуух
    STOCK_CHECK = "STOCK_CHECK"  # Үлдэгдэл асуух
    ORDER_CREATE = "ORDER_CREATE"  # Захиалах хүсэлт
    ORDER_STATUS = "ORDER_STATUS"  # Захиалга, хүргэлтийн явц
    COMPLAINT = "COMPLAINT"  # Гомдол
    THANK_YOU = "THANK_YOU"  # Талархал
    OTHER = "OTHER"


MATCH_CONFIDENCE = 0.85
DEFAULT_CONFIDENCE = 0.5

GREETING_PATTERN = re.compile(
    r"(сайн\s+байна\s+уу|сайн\s+байнуу|сайн\s+уу|сайхан\s+амарсан\s+уу|юу\s+байна|\bhello\b|\bhi\b|\bhey\b|\bsain\b)"
)

# Checked in order; first match wins. Greeting words are stripped first so
# "сайн байна уу" does not read as a stock question.
INTENT_PATTERNS: tuple[tuple[Intent, re.Pattern], ...] = (
    (
        Intent.ORDER_STATUS,
        re.compile(r"(захиалга\s+хаана|захиалга\s+хэзээ|хүргэлт|хаана\s+яваа|хэзээ\s+ирэх|\bdelivery\b|\btracking\b)"),
    ),
    (
        Intent.COMPLAINT,
        re.compile(r"(гомдол|асуудал|буруу|эвдэрсэн|сэтгэл\s+дундуур|\bмуу\b|\bcomplain\w*|\brefund\b)"),
    ),
    (
        Intent.THANK_YOU,
        re.compile(r"(баярлалаа|баярлаа|гайгүй|\bthanks\b|\bthank\s+you\b|\bthx\b)"),
    ),
    (
        Intent.PRICE_CHECK,
        re.compile(r"(үнэ|хэд\s+вэ|хэдэн\s+төгрөг|хэчнээн|ямар\s+үнэтэй|\bprice\b|\bhow\s+much\b)"),
    ),
    (
        Intent.ORDER_CREATE,
        re.compile(r"(захиал|авъя|авья|авмаар|авах|худалдаж\s+ав|\border\b|\bbuy\b)"),
    ),
    (
        Intent.STOCK_CHECK,
        re.compile(r"(байна\s+уу|байгаа\s+юу|үлдэгдэл|нөөц|бий\s+юу|хэдэн\s+ширхэг|\bin\s+stock\b|\bavailable\b)"),
    ),
    (
        Intent.PRODUCT_INQUIRY,
        re.compile(r"(ямар.*байна|юу.*байна|бараа|бүтээгдэхүүн|харуулаач|харуулна\s+уу|\bproducts?\b|\bcatalog\b)"),
    ),
)

QUANTITY_PATTERN = re.compile(r"(\d+)\s*(ширхэг|ш\b|pcs\b|pc\b)")
COLORS = ("улаан", "хар", "цагаан", "хөх", "ногоон", "шар", "саарал", "ягаан", "бор")
SIZE_PATTERN = re.compile(r"(?<![\w])(xxl|xl|xs|s|m|l|жижиг|дунд|том)(?![\w])")


@dataclass
class IntentResult:
    intent: Intent
    confidence: float
    entities: dict = field(default_factory=dict)


def normalize_for_matching(text: Optional[str]) -> str:
    """Casefold, collapse whitespace and trim edge punctuation."""
    if not text:
        return ""
    normalized = text.strip().casefold()
    normalized = re.sub(r"\s+", " ", normalized)
    normalized = re.sub(r"^[^\w]+|[^\w]+$", "", normalized)
    return normalized


def extract_entities(normalized: str) -> dict:
    entities: dict = {}

    quantity = QUANTITY_PATTERN.search(normalized)
    if quantity:
        entities["quantity"] = int(quantity.group(1))

    for color in COLORS:
        if re.search(rf"(?<![\w]){color}(?![\w])", normalized):
            entities["color"] = color
            break

    size = SIZE_PATTERN.search(normalized)
    if size:
        entities["size"] = size.group(1)

    return entities


def detect_intent(text: Optional[str]) -> IntentResult:
    """Keyword classification of a customer message. Pure; no I/O."""
    normalized = normalize_for_matching(text)
    if not normalized:
        return IntentResult(intent=Intent.OTHER, confidence=DEFAULT_CONFIDENCE)

    entities = extract_entities(normalized)
    has_greeting = bool(GREETING_PATTERN.search(normalized))
    remainder = GREETING_PATTERN.sub(" ", normalized) if has_greeting else normalized

    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(remainder):
            return IntentResult(intent=intent, confidence=MATCH_CONFIDENCE, entities=entities)

    if has_greeting:
        return IntentResult(intent=Intent.GREETING, confidence=MATCH_CONFIDENCE, entities=entities)

    return IntentResult(intent=Intent.OTHER, confidence=DEFAULT_CONFIDENCE, entities=entities)
