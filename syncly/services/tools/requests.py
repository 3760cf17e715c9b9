"""Typed tool requests the model may issue.

``parse_tool_call`` is the only place a tool name string is looked at;
everything downstream works with these dataclasses.
"""

from dataclasses import dataclass, field
from typing import Optional, Union


class UnknownToolError(Exception):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolArgumentError(ValueError):
    pass


def _text(args: dict, key: str, required: bool = False) -> Optional[str]:
    value = args.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ToolArgumentError(f"Missing required argument: {key}")
        return None
    return str(value).strip()


def _int(args: dict, key: str, default: int) -> int:
    value = args.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ToolArgumentError(f"Argument {key} must be an integer") from exc


@dataclass
class AddToCart:
    product_name: str
    quantity: int = 1
    color: Optional[str] = None
    size: Optional[str] = None

    @classmethod
    def from_arguments(cls, args: dict) -> "AddToCart":
        return cls(
            product_name=_text(args, "product_name", required=True),
            quantity=_int(args, "quantity", 1),
            color=_text(args, "color"),
            size=_text(args, "size"),
        )


@dataclass
class RemoveFromCart:
    product_name: str

    @classmethod
    def from_arguments(cls, args: dict) -> "RemoveFromCart":
        return cls(product_name=_text(args, "product_name", required=True))


@dataclass
class ViewCart:
    @classmethod
    def from_arguments(cls, args: dict) -> "ViewCart":
        return cls()


@dataclass
class Checkout:
    notes: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_arguments(cls, args: dict) -> "Checkout":
        return cls(notes=_text(args, "notes"), address=_text(args, "address"))


@dataclass
class ShowProductImage:
    product_names: list[str] = field(default_factory=list)
    mode: str = "single"  # single, multiple, confirm

    @classmethod
    def from_arguments(cls, args: dict) -> "ShowProductImage":
        names = args.get("product_names")
        if isinstance(names, str):
            names = [names]
        names = [str(name).strip() for name in (names or []) if str(name).strip()]
        if not names:
            raise ToolArgumentError("Missing required argument: product_names")
        mode = _text(args, "mode") or "single"
        if mode not in ("single", "multiple", "confirm"):
            mode = "single"
        return cls(product_names=names, mode=mode)


@dataclass
class CollectContactInfo:
    phone: Optional[str] = None
    address: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_arguments(cls, args: dict) -> "CollectContactInfo":
        return cls(phone=_text(args, "phone"), address=_text(args, "address"), name=_text(args, "name"))


@dataclass
class RequestHumanSupport:
    reason: Optional[str] = None

    @classmethod
    def from_arguments(cls, args: dict) -> "RequestHumanSupport":
        return cls(reason=_text(args, "reason"))


@dataclass
class CancelOrder:
    reason: Optional[str] = None

    @classmethod
    def from_arguments(cls, args: dict) -> "CancelOrder":
        return cls(reason=_text(args, "reason"))


@dataclass
class CheckPaymentStatus:
    @classmethod
    def from_arguments(cls, args: dict) -> "CheckPaymentStatus":
        return cls()


@dataclass
class RememberPreference:
    key: str
    value: str

    @classmethod
    def from_arguments(cls, args: dict) -> "RememberPreference":
        return cls(key=_text(args, "key", required=True), value=_text(args, "value", required=True))


ToolRequest = Union[
    AddToCart,
    RemoveFromCart,
    ViewCart,
    Checkout,
    ShowProductImage,
    CollectContactInfo,
    RequestHumanSupport,
    CancelOrder,
    CheckPaymentStatus,
    RememberPreference,
]

TOOL_REQUESTS: dict[str, type] = {
    "add_to_cart": AddToCart,
    "remove_from_cart": RemoveFromCart,
    "view_cart": ViewCart,
    "checkout": Checkout,
    "show_product_image": ShowProductImage,
    "collect_contact_info": CollectContactInfo,
    "request_human_support": RequestHumanSupport,
    "cancel_order": CancelOrder,
    "check_payment_status": CheckPaymentStatus,
    "remember_preference": RememberPreference,
}


def parse_tool_call(name: str, arguments: Optional[dict]) -> ToolRequest:
    request_type = TOOL_REQUESTS.get(name)
    if request_type is None:
        raise UnknownToolError(name)
    return request_type.from_arguments(arguments or {})
