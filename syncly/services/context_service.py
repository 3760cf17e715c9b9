from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from syncly.logging_config import get_logger
from syncly.models import Customer, Product, Shop, ShopFaq, ShopQuickReply, ShopSlogan
from syncly.services.cart_service import discounted_price
from syncly.services.history_service import monthly_usage
from syncly.services.notification_service import build_notify_settings
from syncly.services.plans import PlanConfig, get_plan_config, get_plan_type

logger = get_logger("context_service")

PLACEHOLDER_IMAGE_URL = "https://placehold.co/600x400?text=No+Image"


@dataclass
class AIProduct:
    id: str
    name: str
    price: int
    discounted_price: int
    stock: int
    description: Optional[str] = None
    discount_percent: int = 0
    variants: list[dict] = field(default_factory=list)
    images: list[str] = field(default_factory=list)

    @property
    def primary_image(self) -> str:
        return self.images[0] if self.images else PLACEHOLDER_IMAGE_URL


@dataclass
class ChatContext:
    """Everything one AI turn may read or act on, scoped to a single shop."""

    db: Session
    shop: Shop
    customer: Customer
    plan: PlanConfig
    products: list[AIProduct] = field(default_factory=list)
    faqs: list[dict] = field(default_factory=list)
    quick_replies: list[dict] = field(default_factory=list)
    slogans: list[dict] = field(default_factory=list)
    policies: dict = field(default_factory=dict)
    custom_knowledge: dict = field(default_factory=dict)
    notify_settings: dict = field(default_factory=dict)
    customer_orders: int = 0
    customer_memory: dict = field(default_factory=dict)
    shop_messages_this_month: int = 0

    @property
    def shop_id(self):
        return self.shop.id

    @property
    def customer_id(self):
        return self.customer.id


def to_ai_product(product: Product) -> AIProduct:
    images = [url for url in (product.images or []) if isinstance(url, str) and url]
    if not images and product.image_url:
        images = [product.image_url]
    variants = [variant for variant in (product.variants or []) if isinstance(variant, dict)]
    return AIProduct(
        id=str(product.id),
        name=product.name,
        price=int(product.price or 0),
        discounted_price=discounted_price(product),
        stock=product.available_stock,
        description=product.description or None,
        discount_percent=int(product.discount_percent or 0),
        variants=variants,
        images=images,
    )


def load_products(db: Session, shop_id) -> list[AIProduct]:
    rows = (
        db.query(Product)
        .filter(Product.shop_id == shop_id, Product.is_active.is_(True))
        .order_by(Product.created_at.asc())
        .all()
    )
    return [to_ai_product(row) for row in rows]


def load_ai_features(db: Session, shop_id) -> tuple[list[dict], list[dict], list[dict]]:
    faqs = [
        {"question": row.question, "answer": row.answer}
        for row in db.query(ShopFaq).filter(ShopFaq.shop_id == shop_id, ShopFaq.is_active.is_(True)).all()
    ]
    quick_replies = [
        {"trigger_words": list(row.trigger_words or []), "response": row.response, "is_exact_match": row.is_exact_match}
        for row in db.query(ShopQuickReply)
        .filter(ShopQuickReply.shop_id == shop_id, ShopQuickReply.is_active.is_(True))
        .all()
    ]
    slogans = [
        {"slogan": row.slogan, "usage_context": row.usage_context or "any"}
        for row in db.query(ShopSlogan).filter(ShopSlogan.shop_id == shop_id, ShopSlogan.is_active.is_(True)).all()
    ]
    return faqs, quick_replies, slogans


def build_chat_context(db: Session, shop: Shop, customer: Customer, now: Optional[datetime] = None) -> ChatContext:
    """Assemble the per-request context. The plan is resolved fresh every call."""
    now = now or datetime.now(timezone.utc)
    plan = get_plan_config(get_plan_type(shop.subscription_plan, shop.subscription_status, shop.trial_ends_at, now))
    faqs, quick_replies, slogans = load_ai_features(db, shop.id)
    return ChatContext(
        db=db,
        shop=shop,
        customer=customer,
        plan=plan,
        products=load_products(db, shop.id),
        faqs=faqs,
        quick_replies=quick_replies,
        slogans=slogans,
        policies=dict(shop.policies or {}),
        custom_knowledge=dict(shop.custom_knowledge or {}),
        notify_settings=build_notify_settings(shop),
        customer_orders=customer.total_orders or 0,
        customer_memory=dict(customer.ai_memory or {}) if plan.memory else {},
        shop_messages_this_month=monthly_usage(shop, now),
    )
