from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from syncly.logging_config import get_logger
from syncly.services import cart_service, customer_service, order_service
from syncly.services.cart_service import CartSummary
from syncly.services.context_service import AIProduct, ChatContext
from syncly.services.intent_service import normalize_for_matching
from syncly.services.messenger_service import format_price
from syncly.services.notification_service import schedule_notification
from syncly.services.tools.requests import (
    AddToCart,
    CancelOrder,
    CheckPaymentStatus,
    Checkout,
    CollectContactInfo,
    RememberPreference,
    RemoveFromCart,
    RequestHumanSupport,
    ShowProductImage,
    ToolArgumentError,
    ToolRequest,
    UnknownToolError,
    ViewCart,
    parse_tool_call,
)
from syncly.services.transport import ImageAction, ProductCard, QuickReply

logger = get_logger("tool_executor")

CART_QUICK_REPLIES = [
    QuickReply(title="💳 Төлбөр төлөх", payload="CHECKOUT"),
    QuickReply(title="🛒 Сагс харах", payload="VIEW_CART"),
    QuickReply(title="🔙 Үргэлжлүүлэх", payload="CONTINUE_SHOPPING"),
]

ORDER_STATUS_LABELS = {
    "pending": "төлбөр хүлээгдэж байна",
    "confirmed": "баталгаажсан",
    "processing": "бэлтгэгдэж байна",
    "shipped": "хүргэлтэнд гарсан",
    "delivered": "хүргэгдсэн",
    "cancelled": "цуцлагдсан",
}


@dataclass
class ToolResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: dict = field(default_factory=dict)
    image_action: Optional[ImageAction] = None
    quick_replies: list[QuickReply] = field(default_factory=list)

    @classmethod
    def failed(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_model_payload(self) -> dict:
        """What the model sees as the tool message content."""
        payload = {"success": self.success}
        if self.message:
            payload["message"] = self.message
        if self.error:
            payload["error"] = self.error
        if self.data:
            payload.update(self.data)
        return payload


def format_cart(summary: CartSummary) -> str:
    if summary.is_empty:
        return "Таны сагс хоосон байна."
    lines = ["🛒 Таны сагс:"]
    for line in summary.lines:
        specs = " ".join(str(value) for value in line.variant_specs.values())
        label = f"{line.name} ({specs})" if specs else line.name
        lines.append(f"• {label} x{line.quantity} = {format_price(line.subtotal)}")
    lines.append(f"Нийт: {format_price(summary.total)}")
    return "\n".join(lines)


def match_products(products: list[AIProduct], names: list[str]) -> list[AIProduct]:
    """Loose name match in both directions, catalog order kept, no duplicates."""
    matched: list[AIProduct] = []
    for name in names:
        needle = normalize_for_matching(name)
        if not needle:
            continue
        for product in products:
            candidate = normalize_for_matching(product.name)
            if (needle in candidate or candidate in needle) and product not in matched:
                matched.append(product)
    return matched


def _add_to_cart(request: AddToCart, ctx: ChatContext) -> ToolResult:
    result = cart_service.add_to_cart(
        ctx.db,
        shop_id=ctx.shop_id,
        customer_id=ctx.customer_id,
        product_name=request.product_name,
        quantity=request.quantity,
        color=request.color,
        size=request.size,
    )
    if not result.ok:
        return ToolResult.failed(result.error)

    added = result.value
    message = (
        f"{added.line.name} x{added.added_quantity} сагсанд нэмэгдлээ. "
        f"Сагсны нийт дүн: {format_price(added.cart.total)}"
    )
    if 0 < added.remaining_stock <= cart_service.LOW_STOCK_THRESHOLD:
        message += f"\n⚡ Зөвхөн {added.remaining_stock} ширхэг үлдлээ!"
    return ToolResult(
        success=True,
        message=message,
        data={"cart_total": added.cart.total, "item_count": added.cart.item_count},
        quick_replies=list(CART_QUICK_REPLIES),
    )


def _remove_from_cart(request: RemoveFromCart, ctx: ChatContext) -> ToolResult:
    result = cart_service.remove_from_cart(
        ctx.db, shop_id=ctx.shop_id, customer_id=ctx.customer_id, product_name=request.product_name
    )
    if not result.ok:
        return ToolResult.failed(result.error)
    return ToolResult(
        success=True,
        message=f"{request.product_name} сагснаас хасагдлаа.\n{format_cart(result.value)}",
        data={"cart_total": result.value.total},
    )


def _view_cart(request: ViewCart, ctx: ChatContext) -> ToolResult:
    summary = cart_service.view_cart(ctx.db, shop_id=ctx.shop_id, customer_id=ctx.customer_id)
    return ToolResult(
        success=True,
        message=format_cart(summary),
        data={"cart_total": summary.total, "item_count": summary.item_count},
        quick_replies=list(CART_QUICK_REPLIES[:1]) if not summary.is_empty else [],
    )


def _checkout(request: Checkout, ctx: ChatContext) -> ToolResult:
    address = request.address or ctx.customer.address
    result = order_service.checkout(
        ctx.db,
        shop_id=ctx.shop_id,
        customer_id=ctx.customer_id,
        notes=request.notes,
        delivery_address=address,
    )
    if not result.ok:
        return ToolResult.failed(result.error)

    order = result.value
    items = [f"{item.product_name} x{item.quantity}" for item in order.items]
    schedule_notification(
        ctx.shop,
        "order",
        {
            "Захиалга": str(order.id)[:8],
            "Харилцагч": ctx.customer.name,
            "Утас": ctx.customer.phone,
            "Хаяг": address,
            "Бараа": items,
            "Нийт": format_price(order.total_amount),
        },
    )
    message = f"✅ Захиалга үүслээ! Нийт: {format_price(order.total_amount)}"
    if not ctx.customer.phone:
        message += "\nХүргэлтийн мэдээлэлд утасны дугаараа үлдээнэ үү."
    return ToolResult(
        success=True,
        message=message,
        data={"order_id": str(order.id), "total_amount": order.total_amount, "items": items},
    )


def _show_product_image(request: ShowProductImage, ctx: ChatContext) -> ToolResult:
    matched = match_products(ctx.products, request.product_names)
    if not matched:
        return ToolResult.failed("Зурагтай бүтээгдэхүүн олдсонгүй.")

    cards = [
        ProductCard(
            name=product.name,
            price=product.discounted_price,
            image_url=product.primary_image,
            description=product.description,
            product_id=product.id,
        )
        for product in matched
    ]
    mode = "single" if len(cards) == 1 else request.mode
    if mode == "single" and len(cards) > 1:
        mode = "multiple"
    return ToolResult(
        success=True,
        message=f"{len(cards)} бүтээгдэхүүний зургийг харуулж байна.",
        data={"products": [card.name for card in cards]},
        image_action=ImageAction(type=mode, products=cards),
    )


def _collect_contact_info(request: CollectContactInfo, ctx: ChatContext) -> ToolResult:
    changed = customer_service.update_contact_info(
        ctx.db, ctx.customer, phone=request.phone, address=request.address, name=request.name
    )
    if not changed:
        return ToolResult.failed("Хадгалах шинэ мэдээлэл алга.")
    schedule_notification(
        ctx.shop,
        "contact",
        {"Харилцагч": ctx.customer.name, "Утас": ctx.customer.phone, "Хаяг": ctx.customer.address},
    )
    return ToolResult(success=True, message="Мэдээллийг хадгаллаа.", data={"updated": changed})


def _request_human_support(request: RequestHumanSupport, ctx: ChatContext) -> ToolResult:
    schedule_notification(
        ctx.shop,
        "support",
        {"Харилцагч": ctx.customer.name, "Утас": ctx.customer.phone, "Шалтгаан": request.reason},
    )
    return ToolResult(success=True, message="Ажилтан тантай удахгүй холбогдоно.")


def _cancel_order(request: CancelOrder, ctx: ChatContext) -> ToolResult:
    result = order_service.cancel_order(ctx.db, shop_id=ctx.shop_id, customer_id=ctx.customer_id)
    if not result.ok:
        return ToolResult.failed(result.error)
    order = result.value
    schedule_notification(
        ctx.shop,
        "cancel",
        {"Захиалга": str(order.id)[:8], "Харилцагч": ctx.customer.name, "Шалтгаан": request.reason},
    )
    return ToolResult(success=True, message="Захиалга цуцлагдлаа.", data={"order_id": str(order.id)})


def _check_payment_status(request: CheckPaymentStatus, ctx: ChatContext) -> ToolResult:
    order = order_service.get_latest_order(ctx.db, shop_id=ctx.shop_id, customer_id=ctx.customer_id)
    if order is None:
        return ToolResult.failed("Танд захиалга алга байна.")
    label = ORDER_STATUS_LABELS.get(order.status, order.status)
    return ToolResult(
        success=True,
        message=f"Таны сүүлийн захиалга ({format_price(order.total_amount)}): {label}.",
        data={"order_id": str(order.id), "status": order.status},
    )


def _remember_preference(request: RememberPreference, ctx: ChatContext) -> ToolResult:
    memory = customer_service.remember_preference(ctx.db, ctx.customer, request.key, request.value)
    ctx.customer_memory = memory
    return ToolResult(success=True, message="Тэмдэглэж авлаа.")


def run_tool(request: ToolRequest, ctx: ChatContext) -> ToolResult:
    if isinstance(request, AddToCart):
        return _add_to_cart(request, ctx)
    if isinstance(request, RemoveFromCart):
        return _remove_from_cart(request, ctx)
    if isinstance(request, ViewCart):
        return _view_cart(request, ctx)
    if isinstance(request, Checkout):
        return _checkout(request, ctx)
    if isinstance(request, ShowProductImage):
        return _show_product_image(request, ctx)
    if isinstance(request, CollectContactInfo):
        return _collect_contact_info(request, ctx)
    if isinstance(request, RequestHumanSupport):
        return _request_human_support(request, ctx)
    if isinstance(request, CancelOrder):
        return _cancel_order(request, ctx)
    if isinstance(request, CheckPaymentStatus):
        return _check_payment_status(request, ctx)
    if isinstance(request, RememberPreference):
        return _remember_preference(request, ctx)
    raise TypeError(f"Unhandled tool request: {type(request).__name__}")


def execute_tool(name: str, arguments: Optional[dict], ctx: ChatContext) -> ToolResult:
    """Parse and run one model tool call. Never raises."""
    try:
        request = parse_tool_call(name, arguments)
    except UnknownToolError as exc:
        logger.warning("Model requested unknown tool", extra={"context": {"tool": name}})
        return ToolResult.failed(str(exc))
    except ToolArgumentError as exc:
        return ToolResult.failed(str(exc))

    if ctx.plan is not None and not ctx.plan.allows_tool(name):
        logger.info(
            "Tool not enabled for plan",
            extra={"context": {"tool": name, "plan": ctx.plan.name, "shop_id": str(ctx.shop_id)}},
        )
        return ToolResult.failed("Энэ үйлдэл таны багцад идэвхгүй байна.")

    try:
        result = run_tool(request, ctx)
    except Exception as exc:
        ctx.db.rollback()
        logger.error(
            "Tool execution failed",
            extra={"context": {"tool": name, "shop_id": str(ctx.shop_id), "error": str(exc)}},
            exc_info=True,
        )
        return ToolResult.failed(f"Tool {name} failed: {exc}")

    logger.info(
        "Tool executed",
        extra={"context": {"tool": name, "success": result.success, "shop_id": str(ctx.shop_id)}},
    )
    return result
