from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from syncly.logging_config import get_logger
from syncly.models import Customer, Order, OrderItem, Product
from syncly.services.cart_service import available_quantity, get_active_cart
from syncly.services.result import ErrorCode, Result

logger = get_logger("order_service")

CANCELLABLE_STATUSES = ("pending",)


def _reserve_stock(db: Session, *, shop_id, product_id, quantity: int) -> bool:
    """Compare-and-swap reservation; False when another checkout got there first."""
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.shop_id == shop_id,
            Product.is_active.is_(True),
            Product.stock - Product.reserved_stock >= quantity,
        )
        .values(reserved_stock=Product.reserved_stock + quantity)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def _release_stock(db: Session, *, shop_id, product_id, quantity: int) -> None:
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.shop_id == shop_id,
            Product.reserved_stock >= quantity,
        )
        .values(reserved_stock=Product.reserved_stock - quantity)
        .execution_options(synchronize_session=False)
    )
    db.execute(stmt)


def checkout(
    db: Session,
    *,
    shop_id,
    customer_id,
    notes: Optional[str] = None,
    delivery_address: Optional[str] = None,
) -> Result[Order]:
    """Turn the active cart into a pending order and reserve its stock.

    Either every line is reserved, the order written and the cart closed,
    or nothing changes.
    """
    cart = get_active_cart(db, shop_id, customer_id)
    if cart is None or not cart.items:
        return Result.failure("Таны сагс хоосон байна.", code="empty_cart")

    lines = [
        (item.product_id, item.product.name, item.quantity, int(item.unit_price), dict(item.variant_specs or {}), item.product)
        for item in cart.items
    ]

    try:
        for product_id, name, quantity, _, specs, product in lines:
            if specs:
                db.refresh(product)
                variant_available, _ = available_quantity(product, specs)
                if variant_available < quantity:
                    db.rollback()
                    return Result.failure(
                        f"Уучлаарай, {name} хангалттай үлдэгдэлгүй байна.", code="insufficient_stock"
                    )
            if not _reserve_stock(db, shop_id=shop_id, product_id=product_id, quantity=quantity):
                db.rollback()
                logger.info(
                    "Checkout rejected, stock taken",
                    extra={"context": {"shop_id": str(shop_id), "product_id": str(product_id), "quantity": quantity}},
                )
                return Result.failure(f"Уучлаарай, {name} хангалттай үлдэгдэлгүй байна.", code="insufficient_stock")

        total_amount = sum(unit_price * quantity for _, _, quantity, unit_price, _, _ in lines)
        order = Order(
            shop_id=shop_id,
            customer_id=customer_id,
            status="pending",
            total_amount=total_amount,
            notes=notes,
            delivery_address=delivery_address,
        )
        order.items = [
            OrderItem(
                product_id=product_id,
                product_name=name,
                quantity=quantity,
                unit_price=unit_price,
                variant_specs=specs,
            )
            for product_id, name, quantity, unit_price, specs, _ in lines
        ]
        db.add(order)
        cart.status = "checked_out"

        customer = db.query(Customer).filter(Customer.id == customer_id).first()
        if customer is not None:
            customer.total_orders = (customer.total_orders or 0) + 1

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Checkout failed",
            extra={"context": {"shop_id": str(shop_id), "customer_id": str(customer_id), "error": str(exc)}},
        )
        return Result.failure("Захиалга үүсгэхэд алдаа гарлаа.", code="persistence_error")

    db.refresh(order)
    logger.info(
        "Order created",
        extra={"context": {"shop_id": str(shop_id), "order_id": str(order.id), "total": total_amount}},
    )
    return Result.success(order)


def get_latest_order(db: Session, *, shop_id, customer_id, statuses: Optional[tuple] = None) -> Optional[Order]:
    query = db.query(Order).filter(Order.shop_id == shop_id, Order.customer_id == customer_id)
    if statuses:
        query = query.filter(Order.status.in_(statuses))
    return query.order_by(Order.created_at.desc()).first()


def cancel_order(db: Session, *, shop_id, customer_id) -> Result[Order]:
    """Cancel the customer's latest pending order and hand its reservation back."""
    order = get_latest_order(db, shop_id=shop_id, customer_id=customer_id, statuses=CANCELLABLE_STATUSES)
    if order is None:
        return Result.failure("Цуцлах боломжтой захиалга олдсонгүй.", code=ErrorCode.NOT_FOUND)

    try:
        for item in order.items:
            _release_stock(db, shop_id=shop_id, product_id=item.product_id, quantity=item.quantity)
        order.status = "cancelled"
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Order cancel failed", extra={"context": {"order_id": str(order.id), "error": str(exc)}})
        return Result.failure("Захиалга цуцлахад алдаа гарлаа.", code="persistence_error")

    db.refresh(order)
    return Result.success(order)
