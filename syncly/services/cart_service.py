from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from syncly.logging_config import get_logger
from syncly.models import Cart, CartItem, Product
from syncly.services.intent_service import normalize_for_matching
from syncly.services.result import ErrorCode, Result

logger = get_logger("cart_service")

# Below this many units left the add-to-cart reply nudges the customer.
LOW_STOCK_THRESHOLD = 3


@dataclass
class CartLine:
    product_id: object
    name: str
    quantity: int
    unit_price: int
    variant_specs: dict = field(default_factory=dict)

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class CartSummary:
    lines: list[CartLine] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(line.subtotal for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass
class AddedItem:
    line: CartLine
    added_quantity: int
    remaining_stock: int
    cart: CartSummary


def discounted_price(product: Product) -> int:
    price = int(product.price or 0)
    discount = int(product.discount_percent or 0)
    if discount <= 0:
        return price
    return round(price * (1 - discount / 100))


def find_product(db: Session, shop_id, name: str) -> Optional[Product]:
    """Active product by name: exact (case-insensitive) first, then substring.

    Matching happens in Python; database LIKE does not casefold Cyrillic everywhere.
    """
    target = normalize_for_matching(name)
    if not target:
        return None
    products = (
        db.query(Product)
        .filter(Product.shop_id == shop_id, Product.is_active.is_(True))
        .order_by(Product.name.asc())
        .all()
    )
    candidates = [product for product in products if target in normalize_for_matching(product.name)]
    for product in candidates:
        if normalize_for_matching(product.name) == target:
            return product
    return candidates[0] if candidates else None


def get_active_cart(db: Session, shop_id, customer_id, create: bool = False) -> Optional[Cart]:
    cart = (
        db.query(Cart)
        .filter(Cart.shop_id == shop_id, Cart.customer_id == customer_id, Cart.status == "active")
        .first()
    )
    if cart is None and create:
        cart = Cart(shop_id=shop_id, customer_id=customer_id, status="active")
        db.add(cart)
        db.flush()
    return cart


def summarize_cart(cart: Optional[Cart]) -> CartSummary:
    if cart is None:
        return CartSummary()
    return CartSummary(
        lines=[
            CartLine(
                product_id=item.product_id,
                name=item.product.name if item.product else "",
                quantity=item.quantity,
                unit_price=int(item.unit_price),
                variant_specs=dict(item.variant_specs or {}),
            )
            for item in cart.items
        ]
    )


def _variant_specs(color: Optional[str], size: Optional[str]) -> dict:
    specs = {}
    if color:
        specs["color"] = color.strip().lower()
    if size:
        specs["size"] = size.strip().lower()
    return specs


def match_variant(product: Product, specs: dict) -> Optional[dict]:
    """Variant whose color/size agree with every requested spec."""
    if not specs:
        return None
    for variant in product.variants or []:
        if not isinstance(variant, dict):
            continue
        if all(str(variant.get(key, "")).strip().lower() == value for key, value in specs.items()):
            return variant
    return None


def available_quantity(product: Product, specs: dict) -> tuple[int, Optional[str]]:
    """Units that can still be sold for this product/variant, re-read from the row."""
    available = product.available_stock
    if specs and product.variants:
        variant = match_variant(product, specs)
        if variant is None:
            wanted = " ".join(specs.values())
            return 0, f"{product.name}-ийн {wanted} сонголт байхгүй байна."
        variant_stock = variant.get("stock")
        if variant_stock is not None:
            available = min(available, int(variant_stock))
    return available, None


def add_to_cart(
    db: Session,
    *,
    shop_id,
    customer_id,
    product_name: str,
    quantity: int = 1,
    color: Optional[str] = None,
    size: Optional[str] = None,
) -> Result[AddedItem]:
    if quantity < 1:
        return Result.failure("Тоо ширхэг 1-ээс бага байж болохгүй.", code="invalid_quantity")

    product = find_product(db, shop_id, product_name)
    if product is None:
        return Result.failure(f'"{product_name}" нэртэй бараа олдсонгүй.', code=ErrorCode.NOT_FOUND)

    db.refresh(product)
    specs = _variant_specs(color, size)
    available, variant_error = available_quantity(product, specs)
    if variant_error:
        return Result.failure(variant_error, code="variant_not_found")

    cart = get_active_cart(db, shop_id, customer_id, create=True)
    existing = next(
        (item for item in cart.items if item.product_id == product.id and (item.variant_specs or {}) == specs),
        None,
    )
    new_quantity = quantity + (existing.quantity if existing else 0)
    if new_quantity > available:
        db.rollback()
        if available <= 0:
            return Result.failure(f"Уучлаарай, {product.name} дууссан байна.", code="out_of_stock")
        return Result.failure(
            f"Уучлаарай, {product.name} зөвхөн {available} ширхэг үлдсэн байна.",
            code="insufficient_stock",
        )

    unit_price = discounted_price(product)
    if existing:
        existing.quantity = new_quantity
        existing.unit_price = unit_price
    else:
        cart.items.append(
            CartItem(product_id=product.id, quantity=quantity, unit_price=unit_price, variant_specs=specs)
        )

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Add to cart failed", extra={"context": {"product_id": str(product.id), "error": str(exc)}})
        return Result.failure("Сагсанд нэмэхэд алдаа гарлаа.", code="persistence_error")

    db.refresh(cart)
    line = CartLine(
        product_id=product.id,
        name=product.name,
        quantity=new_quantity,
        unit_price=unit_price,
        variant_specs=specs,
    )
    return Result.success(
        AddedItem(
            line=line,
            added_quantity=quantity,
            remaining_stock=available - new_quantity,
            cart=summarize_cart(cart),
        )
    )


def view_cart(db: Session, *, shop_id, customer_id) -> CartSummary:
    return summarize_cart(get_active_cart(db, shop_id, customer_id))


def remove_from_cart(db: Session, *, shop_id, customer_id, product_name: str) -> Result[CartSummary]:
    """Drop a line by product name. The cart itself stays, possibly empty."""
    cart = get_active_cart(db, shop_id, customer_id)
    if cart is None or not cart.items:
        return Result.failure("Таны сагс хоосон байна.", code="empty_cart")

    target = normalize_for_matching(product_name)
    item = next(
        (
            item
            for item in cart.items
            if item.product and target and target in normalize_for_matching(item.product.name)
        ),
        None,
    )
    if item is None:
        return Result.failure(f'Сагсанд "{product_name}" алга байна.', code=ErrorCode.NOT_FOUND)

    cart.items.remove(item)
    db.commit()
    db.refresh(cart)
    return Result.success(summarize_cart(cart))
