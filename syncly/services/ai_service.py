from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import List, Optional

from syncly.config import settings
from syncly.logging_config import get_logger
from syncly.services.context_service import AIProduct, ChatContext
from syncly.services.intent_service import normalize_for_matching
from syncly.services.llm import LLMProvider, LLMProviderError, LLMResponse, OpenAIProvider
from syncly.services.messenger_service import format_price
from syncly.services.plans import check_message_limit
from syncly.services.tools import execute_tool, tools_for_plan
from syncly.services.tools.executor import match_products
from syncly.services.transport import ImageAction, ProductCard, QuickReply

logger = get_logger("ai_service")

MAX_PROMPT_PRODUCTS = 50
IMAGE_MATCH_MIN_CONFIDENCE = 0.5
VISION_MAX_TOKENS = 300

LIMIT_REACHED_TEXT = (
    "Уучлаарай, энэ сарын автомат хариултын хязгаар дууссан байна. Манай ажилтан танд удахгүй хариулна."
)
UNRECOGNIZED_IMAGE_TEXT = "Уучлаарай, зургийг таньж чадсангүй. Ямар бараа сонирхож байгаагаа бичээд өгөөрэй."

EMOTION_STYLES = {
    "friendly": "Warm and friendly, light use of emoji.",
    "professional": "Polite and professional, no slang, no emoji.",
    "enthusiastic": "Energetic and upbeat, celebrate good choices.",
    "calm": "Calm and reassuring, short sentences.",
    "playful": "Playful and fun, emoji welcome.",
}

VISION_PROMPT = (
    "You match customer photos to a shop catalog. Reply with JSON only: "
    '{"matched_product": "<exact catalog name or null>", "confidence": <0..1>, '
    '"description": "<one short Mongolian sentence describing the photo>"}'
)

_llm_provider: Optional[LLMProvider] = None


@dataclass
class ChatResponse:
    text: str
    image_action: Optional[ImageAction] = None
    quick_replies: List[QuickReply] = field(default_factory=list)
    usage: Optional[dict] = None
    limit_reached: bool = False


@dataclass
class ImageAnalysis:
    matched_product: Optional[AIProduct] = None
    confidence: float = 0.0
    description: Optional[str] = None


def get_llm_provider() -> LLMProvider:
    """Get or create LLM provider instance."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = OpenAIProvider(api_key=settings.openai_api_key)
    return _llm_provider


def _format_product(product: AIProduct) -> str:
    price = format_price(product.discounted_price)
    if product.discount_percent:
        price = f"{price} (-{product.discount_percent}%, үндсэн {format_price(product.price)})"
    line = f"- {product.name}: {price}, үлдэгдэл {product.stock}"
    if product.variants:
        options = [
            "/".join(str(variant[key]) for key in ("color", "size") if variant.get(key))
            for variant in product.variants
        ]
        options = [option for option in options if option]
        if options:
            line += f", сонголт: {', '.join(options)}"
    if product.description:
        line += f". {product.description}"
    return line


def build_system_prompt(ctx: ChatContext) -> str:
    shop = ctx.shop
    sections = [
        f"You are the sales assistant of the online shop \"{shop.name}\". Reply in Mongolian unless the customer writes in another language.",
        f"Tone: {EMOTION_STYLES.get(shop.ai_emotion or 'friendly', EMOTION_STYLES['friendly'])}",
        "Only offer products from the catalog below. Never invent prices or stock.",
        "Use tools to change the cart, place orders or show photos; do not claim an action happened unless the tool succeeded.",
    ]
    if shop.description:
        sections.append(f"About the shop: {shop.description}")
    if shop.ai_instructions:
        sections.append(f"Owner instructions: {shop.ai_instructions}")

    if ctx.products:
        catalog = "\n".join(_format_product(product) for product in ctx.products[:MAX_PROMPT_PRODUCTS])
        sections.append(f"Catalog:\n{catalog}")
    else:
        sections.append("Catalog: no products yet.")

    if ctx.policies:
        sections.append("Policies:\n" + "\n".join(f"- {key}: {value}" for key, value in ctx.policies.items() if value))
    if ctx.custom_knowledge:
        sections.append(
            "Shop knowledge:\n" + "\n".join(f"- {key}: {value}" for key, value in ctx.custom_knowledge.items())
        )
    if ctx.faqs:
        sections.append("FAQ:\n" + "\n".join(f"Q: {faq['question']}\nA: {faq['answer']}" for faq in ctx.faqs))
    if ctx.quick_replies:
        sections.append(
            "Canned answers (use when the customer's words match):\n"
            + "\n".join(f"- {', '.join(reply['trigger_words'])}: {reply['response']}" for reply in ctx.quick_replies)
        )
    if ctx.slogans:
        sections.append(
            "Slogans:\n" + "\n".join(f"- ({slogan['usage_context']}) {slogan['slogan']}" for slogan in ctx.slogans)
        )

    customer = ctx.customer
    profile = [f"orders so far: {ctx.customer_orders}"]
    if customer.name:
        profile.append(f"name: {customer.name}")
    if customer.is_vip:
        profile.append("VIP customer")
    if ctx.customer_memory:
        profile.append("remembered: " + ", ".join(f"{key}={value}" for key, value in ctx.customer_memory.items()))
    sections.append("Customer: " + "; ".join(profile))

    return "\n\n".join(sections)


async def _generate_with_retry(provider: LLMProvider, **kwargs) -> LLMResponse:
    attempts = max(settings.ai_max_retries, 0) + 1
    for attempt in range(attempts):
        try:
            return await provider.generate(**kwargs)
        except LLMProviderError as exc:
            if not exc.is_retryable or attempt == attempts - 1:
                raise
            delay = settings.ai_retry_backoff_seconds * (2**attempt)
            logger.warning(
                "LLM call retrying",
                extra={"context": {"attempt": attempt + 1, "status": exc.status_code, "delay": delay}},
            )
            await asyncio.sleep(delay)
    raise LLMProviderError("LLM retries exhausted")


def _merge_usage(*usages: Optional[dict]) -> Optional[dict]:
    merged: dict = {}
    for usage in usages:
        for key, value in (usage or {}).items():
            if isinstance(value, (int, float)):
                merged[key] = merged.get(key, 0) + value
    return merged or None


async def route_to_ai(
    message: str,
    ctx: ChatContext,
    history: List[dict],
    provider: Optional[LLMProvider] = None,
) -> ChatResponse:
    """Run one AI turn: model call, tool execution, and a follow-up call with tool results.

    Provider errors propagate; the pipeline turns them into the fallback reply.
    """
    limit = check_message_limit(ctx.plan, ctx.shop_messages_this_month)
    if not limit.allowed:
        logger.warning(
            "Monthly message limit reached",
            extra={"context": {"shop_id": str(ctx.shop_id), "plan": ctx.plan.name, "limit": limit.limit}},
        )
        return ChatResponse(text=LIMIT_REACHED_TEXT, limit_reached=True)

    provider = provider or get_llm_provider()
    messages = [{"role": "system", "content": build_system_prompt(ctx)}, *history, {"role": "user", "content": message}]
    tools = tools_for_plan(ctx.plan)

    first = await _generate_with_retry(
        provider,
        messages=messages,
        model=ctx.plan.model,
        max_tokens=ctx.plan.max_tokens,
        tools=tools or None,
    )
    if not first.tool_calls:
        return ChatResponse(text=first.content.strip(), usage=first.usage)

    messages.append(
        {
            "role": "assistant",
            "content": first.content or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments, ensure_ascii=False)},
                }
                for call in first.tool_calls
            ],
        }
    )

    image_action: Optional[ImageAction] = None
    quick_replies: List[QuickReply] = []
    tool_texts: List[str] = []
    for call in first.tool_calls:
        result = execute_tool(call.name, call.arguments, ctx)
        if result.image_action is not None:
            image_action = result.image_action
        if result.quick_replies:
            quick_replies = result.quick_replies
        tool_texts.append(result.message if result.success else (result.error or ""))
        messages.append(
            {
                "role": "tool",
                "tool_call_id": call.id,
                "content": json.dumps(result.to_model_payload(), ensure_ascii=False),
            }
        )

    tool_summary = "\n".join(part for part in tool_texts if part)
    try:
        second = await _generate_with_retry(
            provider,
            messages=messages,
            model=ctx.plan.model,
            max_tokens=ctx.plan.max_tokens,
        )
    except LLMProviderError as exc:
        # Tools may already have committed (checkout, cancel); report what they did.
        if not tool_summary:
            raise
        logger.warning(
            "Follow-up LLM call failed, replying with tool results",
            extra={"context": {"shop_id": str(ctx.shop_id), "error": str(exc)}},
        )
        return ChatResponse(text=tool_summary, image_action=image_action, quick_replies=quick_replies, usage=first.usage)

    return ChatResponse(
        text=second.content.strip() or tool_summary,
        image_action=image_action,
        quick_replies=quick_replies,
        usage=_merge_usage(first.usage, second.usage),
    )


def _parse_vision_json(content: str) -> dict:
    cleaned = re.sub(r"^```(?:json)?|```$", "", (content or "").strip(), flags=re.MULTILINE).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return {"description": cleaned[:200] or None}
    return data if isinstance(data, dict) else {}


def _find_catalog_product(products: List[AIProduct], name: Optional[str]) -> Optional[AIProduct]:
    if not name:
        return None
    target = normalize_for_matching(name)
    for product in products:
        if normalize_for_matching(product.name) == target:
            return product
    matched = match_products(products, [name])
    return matched[0] if len(matched) == 1 else None


async def analyze_product_image(
    image_url: str,
    ctx: ChatContext,
    provider: Optional[LLMProvider] = None,
) -> ImageAnalysis:
    """Match a customer photo against the catalog with the plan's vision model.

    A match, a description only, or neither are all normal outcomes.
    """
    if not ctx.plan.vision:
        logger.info("Vision not in plan", extra={"context": {"shop_id": str(ctx.shop_id), "plan": ctx.plan.name}})
        return ImageAnalysis()

    provider = provider or get_llm_provider()
    catalog = "\n".join(f"- {product.name}" for product in ctx.products[:MAX_PROMPT_PRODUCTS]) or "(empty)"
    messages = [
        {"role": "system", "content": VISION_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": f"Catalog:\n{catalog}"},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        },
    ]
    try:
        response = await _generate_with_retry(
            provider,
            messages=messages,
            model=ctx.plan.vision_model,
            max_tokens=VISION_MAX_TOKENS,
        )
    except LLMProviderError as exc:
        logger.warning("Image analysis failed", extra={"context": {"shop_id": str(ctx.shop_id), "error": str(exc)}})
        return ImageAnalysis()

    data = _parse_vision_json(response.content)
    try:
        confidence = float(data.get("confidence") or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    product = _find_catalog_product(ctx.products, data.get("matched_product"))
    if product is not None and confidence < IMAGE_MATCH_MIN_CONFIDENCE:
        product = None
    description = data.get("description")
    return ImageAnalysis(
        matched_product=product,
        confidence=confidence,
        description=description.strip() if isinstance(description, str) and description.strip() else None,
    )


def build_product_card_text(product: AIProduct) -> str:
    lines = [f"🏷️ {product.name}", f"💰 {format_price(product.discounted_price)}", f"📦 Үлдэгдэл: {product.stock} ширхэг"]
    colors = sorted({str(variant["color"]) for variant in product.variants if variant.get("color")})
    sizes = sorted({str(variant["size"]) for variant in product.variants if variant.get("size")})
    if colors:
        lines.append(f"🎨 Өнгө: {', '.join(colors)}")
    if sizes:
        lines.append(f"📏 Хэмжээ: {', '.join(sizes)}")
    return "\n".join(lines)


def build_image_reply(analysis: ImageAnalysis) -> ChatResponse:
    product = analysis.matched_product
    if product is not None:
        card = ProductCard(
            name=product.name,
            price=product.discounted_price,
            image_url=product.primary_image,
            description=product.description,
            product_id=product.id,
        )
        return ChatResponse(
            text=build_product_card_text(product),
            image_action=ImageAction(type="single", products=[card]),
            quick_replies=[QuickReply(title="🛒 Захиалах", payload=f"ORDER_{product.id}")],
        )
    if analysis.description:
        return ChatResponse(
            text=f"Зурагт: {analysis.description}\nМанай дэлгүүрт яг ийм бараа олдсонгүй. Өөр юу сонирхож байна вэ?"
        )
    return ChatResponse(text=UNRECOGNIZED_IMAGE_TEXT)
