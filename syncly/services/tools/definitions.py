"""Function schemas offered to the model, filtered per plan."""

from syncly.services.plans import PlanConfig


def _function(name: str, description: str, properties: dict, required: list[str] | None = None) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required or [],
            },
        },
    }


TOOL_DEFINITIONS: dict[str, dict] = {
    "add_to_cart": _function(
        "add_to_cart",
        "Add a product to the customer's cart when they clearly want to buy it.",
        {
            "product_name": {"type": "string", "description": "Product name exactly as in the catalog"},
            "quantity": {"type": "integer", "minimum": 1, "default": 1},
            "color": {"type": "string"},
            "size": {"type": "string"},
        },
        ["product_name"],
    ),
    "remove_from_cart": _function(
        "remove_from_cart",
        "Remove a product from the customer's cart.",
        {"product_name": {"type": "string"}},
        ["product_name"],
    ),
    "view_cart": _function("view_cart", "Show what is in the customer's cart and the total.", {}),
    "checkout": _function(
        "checkout",
        "Place an order from the cart when the customer confirms they are done shopping.",
        {"notes": {"type": "string"}, "address": {"type": "string"}},
    ),
    "show_product_image": _function(
        "show_product_image",
        "Show product photos. Use mode=confirm when several products could match what the customer meant.",
        {
            "product_names": {"type": "array", "items": {"type": "string"}},
            "mode": {"type": "string", "enum": ["single", "multiple", "confirm"]},
        },
        ["product_names"],
    ),
    "collect_contact_info": _function(
        "collect_contact_info",
        "Save the phone number, delivery address or name the customer provided.",
        {"phone": {"type": "string"}, "address": {"type": "string"}, "name": {"type": "string"}},
    ),
    "request_human_support": _function(
        "request_human_support",
        "Hand the conversation to shop staff when the customer asks for a person or the issue needs one.",
        {"reason": {"type": "string"}},
    ),
    "cancel_order": _function(
        "cancel_order",
        "Cancel the customer's most recent pending order.",
        {"reason": {"type": "string"}},
    ),
    "check_payment_status": _function(
        "check_payment_status",
        "Look up the status of the customer's most recent order.",
        {},
    ),
    "remember_preference": _function(
        "remember_preference",
        "Remember a lasting customer preference such as size or favourite color.",
        {"key": {"type": "string"}, "value": {"type": "string"}},
        ["key", "value"],
    ),
}


def tools_for_plan(plan: PlanConfig) -> list[dict]:
    if not plan.tool_calling:
        return []
    return [schema for name, schema in TOOL_DEFINITIONS.items() if name in plan.enabled_tools]
