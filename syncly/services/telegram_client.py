from typing import Optional

import httpx

from syncly.logging_config import get_logger
from syncly.services.result import ErrorCode, Result

logger = get_logger("telegram_client")

BASE_URL = "https://api.telegram.org/bot{token}"


async def send_telegram_message(
    bot_token: Optional[str],
    chat_id: Optional[str],
    text: str,
    parse_mode: Optional[str] = "HTML",
    timeout: float = 10.0,
) -> Result[dict]:
    """Post one message through the Bot API. Never raises."""
    if not bot_token or not chat_id:
        return Result.failure("Telegram bot token or chat id missing", code=ErrorCode.NOT_CONFIGURED)

    data = {"chat_id": chat_id, "text": text}
    if parse_mode:
        data["parse_mode"] = parse_mode

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(f"{BASE_URL.format(token=bot_token)}/sendMessage", json=data)
    except Exception as e:
        logger.error(f"Telegram API error: {e}")
        return Result.failure(str(e), code=ErrorCode.NETWORK)

    if response.status_code != 200:
        logger.warning(f"Telegram API rejected message: {response.status_code} - {response.text[:200]}")
        return Result.failure(f"Telegram API error: {response.status_code}", code=ErrorCode.PLATFORM)
    return Result.success(response.json())
