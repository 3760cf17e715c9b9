from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml

from syncly.models.types import as_utc

_PLANS_PATH = Path(__file__).resolve().parents[1] / "knowledge" / "plans.yaml"

DEFAULT_PLAN = "starter"


@dataclass(frozen=True)
class PlanConfig:
    name: str
    model: str
    vision_model: str
    max_tokens: int
    messages_per_month: int
    tool_calling: bool = True
    vision: bool = False
    memory: bool = False
    enabled_tools: frozenset[str] = field(default_factory=frozenset)

    def allows_tool(self, tool_name: str) -> bool:
        return self.tool_calling and tool_name in self.enabled_tools


@dataclass
class MessageLimit:
    allowed: bool
    remaining: int
    limit: int


@lru_cache(maxsize=1)
def load_plan_configs() -> dict[str, PlanConfig]:
    with _PLANS_PATH.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    plans = {}
    for name, raw in (data.get("plans") or {}).items():
        plans[name] = PlanConfig(
            name=name,
            model=raw["model"],
            vision_model=raw.get("vision_model") or raw["model"],
            max_tokens=int(raw["max_tokens"]),
            messages_per_month=int(raw["messages_per_month"]),
            tool_calling=bool(raw.get("tool_calling", True)),
            vision=bool(raw.get("vision", False)),
            memory=bool(raw.get("memory", False)),
            enabled_tools=frozenset(raw.get("enabled_tools") or []),
        )
    return plans


def get_plan_type(
    subscription_plan: Optional[str],
    subscription_status: Optional[str],
    trial_ends_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> str:
    """Map a shop's subscription fields to a plan tier.

    No subscription or an inactive one runs on the trial tier. A trial needs
    an end date still in the future; otherwise, like a lapsed status, it
    drops to starter.
    """
    now = now or datetime.now(timezone.utc)
    status = (subscription_status or "").strip().lower()

    if not status or status == "inactive":
        return "trial"
    if status == "trial":
        ends_at = as_utc(trial_ends_at)
        if ends_at is not None and ends_at > now:
            return "trial"
        return "starter"
    if status != "active":
        return "starter"

    plan = (subscription_plan or "").strip().lower()
    if plan in ("ultimate", "enterprise"):
        return "ultimate"
    if plan in ("pro", "professional"):
        return "pro"
    return "starter"


def get_plan_config(plan_type: str) -> PlanConfig:
    plans = load_plan_configs()
    return plans.get(plan_type) or plans[DEFAULT_PLAN]


def check_message_limit(plan: PlanConfig, message_count: int) -> MessageLimit:
    remaining = max(plan.messages_per_month - (message_count or 0), 0)
    return MessageLimit(allowed=remaining > 0, remaining=remaining, limit=plan.messages_per_month)
