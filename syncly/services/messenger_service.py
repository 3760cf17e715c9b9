from typing import Optional

import httpx

from syncly.config import settings
from syncly.logging_config import get_logger
from syncly.services.result import ErrorCode, Result
from syncly.services.transport import Platform, ProductCard, QuickReply

logger = get_logger("messenger_service")

MAX_QUICK_REPLY_TITLE = 20
MAX_QUICK_REPLIES = 13
MAX_GALLERY_ELEMENTS = 10
MAX_ELEMENT_TITLE = 80
MAX_ELEMENT_SUBTITLE = 80

SENDER_ACTIONS = {"mark_seen", "typing_on", "typing_off"}

PROFILE_FIELDS = {
    Platform.MESSENGER: "first_name,last_name,name",
    Platform.INSTAGRAM: "username,name",
}


def truncate_title(title: str, limit: int = MAX_QUICK_REPLY_TITLE) -> str:
    title = (title or "").strip()
    return title[:limit]


def format_price(price: int) -> str:
    return f"{int(price):,}₮"


class MessengerService:
    """Graph API client for one page/account access token.

    Every method returns a ``Result`` and never raises; failures are logged.
    """

    def __init__(self, access_token: str, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.access_token = access_token
        self.base_url = (base_url or settings.graph_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.graph_api_timeout_seconds

    async def _make_request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Result[dict]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        query = {**(params or {}), "access_token": self.access_token}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, params=query, json=json)
        except Exception as e:
            logger.error(f"Graph API request failed: {e}", extra={"context": {"path": path}})
            return Result.failure(str(e), code=ErrorCode.NETWORK)

        if response.status_code != 200:
            logger.warning(
                "Graph API rejected request",
                extra={"context": {"path": path, "status": response.status_code, "body": response.text[:500]}},
            )
            return Result.failure(
                f"Graph API error: {response.status_code} - {response.text[:200]}",
                code=ErrorCode.PLATFORM,
            )

        try:
            return Result.success(response.json())
        except ValueError:
            return Result.success({})

    async def send_message(self, recipient_id: str, message: dict) -> Result[dict]:
        return await self._make_request(
            "POST",
            "me/messages",
            json={"recipient": {"id": recipient_id}, "messaging_type": "RESPONSE", "message": message},
        )

    async def send_text(self, recipient_id: str, text: str) -> Result[dict]:
        return await self.send_message(recipient_id, {"text": text})

    async def send_quick_replies(self, recipient_id: str, text: str, replies: list[QuickReply]) -> Result[dict]:
        """Send text with quick-reply chips; titles are cut to the platform's 20 chars."""
        quick_replies = [
            {"content_type": "text", "title": truncate_title(reply.title), "payload": reply.payload}
            for reply in replies[:MAX_QUICK_REPLIES]
        ]
        if not quick_replies:
            return await self.send_text(recipient_id, text)
        return await self.send_message(recipient_id, {"text": text, "quick_replies": quick_replies})

    async def send_image(self, recipient_id: str, image_url: str) -> Result[dict]:
        return await self.send_message(
            recipient_id,
            {"attachment": {"type": "image", "payload": {"url": image_url, "is_reusable": True}}},
        )

    async def send_image_gallery(
        self,
        recipient_id: str,
        products: list[ProductCard],
        confirm_mode: bool = False,
    ) -> Result[dict]:
        """Send a generic-template carousel (max 10 cards).

        In confirm mode each card gets a button asking the customer to pick
        the product they meant; otherwise an order button.
        """
        elements = []
        for product in products[:MAX_GALLERY_ELEMENTS]:
            subtitle = format_price(product.price)
            if product.description:
                subtitle = f"{subtitle} · {product.description}"
            key = product.product_id or product.name
            if confirm_mode:
                button = {"type": "postback", "title": "Энэ мөн", "payload": f"CONFIRM_{product.name}"}
            else:
                button = {"type": "postback", "title": "Захиалах", "payload": f"ORDER_{key}"}
            elements.append(
                {
                    "title": product.name[:MAX_ELEMENT_TITLE],
                    "subtitle": subtitle[:MAX_ELEMENT_SUBTITLE],
                    "image_url": product.image_url,
                    "buttons": [button],
                }
            )
        if not elements:
            return Result.failure("No products to render", code=ErrorCode.NOT_FOUND)

        return await self.send_message(
            recipient_id,
            {"attachment": {"type": "template", "payload": {"template_type": "generic", "elements": elements}}},
        )

    async def send_sender_action(self, recipient_id: str, action: str) -> Result[dict]:
        if action not in SENDER_ACTIONS:
            return Result.failure(f"Unsupported sender action: {action}")
        return await self._make_request(
            "POST",
            "me/messages",
            json={"recipient": {"id": recipient_id}, "sender_action": action},
        )

    async def fetch_profile_name(self, user_id: str, platform: Platform) -> Optional[str]:
        result = await self._make_request("GET", user_id, params={"fields": PROFILE_FIELDS[platform]})
        if not result.ok or not result.value:
            return None
        profile = result.value
        name = profile.get("name")
        if not name and (profile.get("first_name") or profile.get("last_name")):
            name = " ".join(part for part in (profile.get("first_name"), profile.get("last_name")) if part)
        return name or profile.get("username") or None

    async def reply_to_comment(self, comment_id: str, message: str, platform: Platform) -> Result[dict]:
        edge = "replies" if platform == Platform.INSTAGRAM else "comments"
        return await self._make_request("POST", f"{comment_id}/{edge}", json={"message": message})
