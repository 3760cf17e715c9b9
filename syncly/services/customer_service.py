import re
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from syncly.config import settings
from syncly.logging_config import get_logger
from syncly.models import Customer, Shop
from syncly.services.messenger_service import MessengerService
from syncly.services.transport import Platform

logger = get_logger("customer_service")

# Mongolian mobile numbers are 8 digits. Runs embedded in longer digit
# strings (order ids, card numbers) are not phones.
PHONE_PATTERN = re.compile(r"(?<!\d)(\d{8})(?!\d)")

ACCOUNT_ID_COLUMNS = {
    Platform.MESSENGER: Shop.facebook_page_id,
    Platform.INSTAGRAM: Shop.instagram_business_account_id,
}


def resolve_shop(db: Session, platform: Platform, account_id: str) -> Optional[Shop]:
    """Find the active shop that owns a page / business account id."""
    if not account_id:
        return None
    column = ACCOUNT_ID_COLUMNS[platform]
    return db.query(Shop).filter(column == account_id, Shop.is_active.is_(True)).first()


def get_access_token(shop: Shop, platform: Platform) -> Optional[str]:
    if platform == Platform.INSTAGRAM:
        # Instagram messaging goes through the linked page token when no IG token is set.
        return shop.instagram_access_token or shop.facebook_page_access_token
    return shop.facebook_page_access_token or settings.facebook_page_access_token


def extract_phone(text: Optional[str]) -> Optional[str]:
    """First standalone 8-digit run in free text. Best effort, not validated."""
    if not text:
        return None
    match = PHONE_PATTERN.search(text)
    return match.group(1) if match else None


def find_customer(db: Session, shop_id, platform: Platform, sender_id: str) -> Optional[Customer]:
    return (
        db.query(Customer)
        .filter(
            Customer.shop_id == shop_id,
            Customer.platform == platform.value,
            Customer.platform_user_id == sender_id,
        )
        .first()
    )


async def get_or_create_customer(
    db: Session,
    shop: Shop,
    platform: Platform,
    sender_id: str,
    messenger: Optional[MessengerService] = None,
) -> Customer:
    customer = find_customer(db, shop.id, platform, sender_id)
    if customer:
        return customer

    name = None
    if messenger is not None:
        name = await messenger.fetch_profile_name(sender_id, platform)

    customer = Customer(
        shop_id=shop.id,
        platform=platform.value,
        platform_user_id=sender_id,
        name=name,
    )
    db.add(customer)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent first contact from the same sender created the row first.
        db.rollback()
        existing = find_customer(db, shop.id, platform, sender_id)
        if existing is None:
            raise
        return existing

    db.refresh(customer)
    logger.info(
        "Customer created",
        extra={"context": {"shop_id": str(shop.id), "customer_id": str(customer.id), "has_name": bool(name)}},
    )
    return customer


async def update_customer_info(
    db: Session,
    customer: Customer,
    text: Optional[str],
    messenger: Optional[MessengerService] = None,
) -> Customer:
    """Backfill a missing name from the platform profile and a missing phone from text."""
    changed = False

    if not customer.name and messenger is not None:
        name = await messenger.fetch_profile_name(customer.platform_user_id, Platform(customer.platform))
        if name:
            customer.name = name
            changed = True

    if not customer.phone:
        phone = extract_phone(text)
        if phone:
            customer.phone = phone
            changed = True
            logger.info("Customer phone captured", extra={"context": {"customer_id": str(customer.id)}})

    if changed:
        db.commit()
    return customer


def update_contact_info(
    db: Session,
    customer: Customer,
    *,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    name: Optional[str] = None,
) -> list[str]:
    """Store contact details the customer gave explicitly. Returns the fields changed."""
    changed = []
    for field_name, value in (("phone", phone), ("address", address), ("name", name)):
        value = (value or "").strip()
        if value and getattr(customer, field_name) != value:
            setattr(customer, field_name, value)
            changed.append(field_name)
    if changed:
        db.commit()
    return changed


def remember_preference(db: Session, customer: Customer, key: str, value: str) -> dict:
    memory = dict(customer.ai_memory or {})
    memory[key] = value
    # Reassign so the JSON column is flagged dirty.
    customer.ai_memory = memory
    db.commit()
    return memory
