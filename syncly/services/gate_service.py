from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from syncly.models import Customer, Shop
from syncly.models.types import as_utc


class GateReason:
    NO_ACCESS_TOKEN = "no_access_token"
    AI_DISABLED = "ai_disabled"
    AI_PAUSED = "ai_paused"


@dataclass
class GateDecision:
    allowed: bool
    reason: Optional[str] = None


def is_ai_paused(customer: Optional[Customer], now: Optional[datetime] = None) -> bool:
    if customer is None or customer.ai_paused_until is None:
        return False
    now = now or datetime.now(timezone.utc)
    return as_utc(customer.ai_paused_until) > now


def evaluate_gates(
    shop: Shop,
    customer: Optional[Customer],
    access_token: Optional[str],
    now: Optional[datetime] = None,
) -> GateDecision:
    """First failing gate wins. A closed gate means no reply at all, not even a fallback."""
    if not access_token:
        return GateDecision(allowed=False, reason=GateReason.NO_ACCESS_TOKEN)
    if not shop.is_ai_active:
        return GateDecision(allowed=False, reason=GateReason.AI_DISABLED)
    if is_ai_paused(customer, now):
        return GateDecision(allowed=False, reason=GateReason.AI_PAUSED)
    return GateDecision(allowed=True)
