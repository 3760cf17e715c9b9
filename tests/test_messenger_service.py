from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx
import pytest

from syncly.services.messenger_service import MessengerService, format_price, truncate_title
from syncly.services.result import ErrorCode, Result
from syncly.services.transport import Platform, ProductCard, QuickReply


@pytest.fixture
def messenger():
    return MessengerService("page-token", base_url="https://graph.test/v18.0", timeout=1)


class TestHelpers:
    def test_truncate_title(self):
        title = "🛒 Захиалах маш урт товчлуурын нэр"
        assert truncate_title(title) == title[:20]
        assert truncate_title("  Сагс  ") == "Сагс"

    def test_format_price(self):
        assert format_price(35000) == "35,000₮"
        assert format_price(0) == "0₮"


class TestMakeRequest:
    @pytest.mark.asyncio
    @patch("syncly.services.messenger_service.httpx.AsyncClient")
    async def test_success_passes_token_and_body(self, mock_client_class, messenger):
        mock_client = MagicMock()
        mock_client.request = AsyncMock(return_value=Mock(status_code=200, json=Mock(return_value={"message_id": "m1"})))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        result = await messenger.send_text("user-1", "hi")

        assert result.ok is True
        assert result.value == {"message_id": "m1"}
        method, url = mock_client.request.call_args[0]
        assert (method, url) == ("POST", "https://graph.test/v18.0/me/messages")
        assert mock_client.request.call_args.kwargs["params"]["access_token"] == "page-token"
        assert mock_client.request.call_args.kwargs["json"]["message"] == {"text": "hi"}

    @pytest.mark.asyncio
    @patch("syncly.services.messenger_service.httpx.AsyncClient")
    async def test_platform_error_is_a_failed_result(self, mock_client_class, messenger):
        mock_client = MagicMock()
        mock_client.request = AsyncMock(return_value=Mock(status_code=400, text='{"error": "bad token"}'))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        result = await messenger.send_text("user-1", "hi")

        assert result.ok is False
        assert result.error_code == ErrorCode.PLATFORM

    @pytest.mark.asyncio
    @patch("syncly.services.messenger_service.httpx.AsyncClient")
    async def test_network_error_is_a_failed_result(self, mock_client_class, messenger):
        mock_client = MagicMock()
        mock_client.request = AsyncMock(side_effect=httpx.ConnectTimeout("timeout"))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        result = await messenger.send_text("user-1", "hi")

        assert result.ok is False
        assert result.error_code == ErrorCode.NETWORK


class TestMessages:
    @pytest.mark.asyncio
    async def test_quick_replies_are_truncated(self, messenger):
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = Result.success({})
            await messenger.send_quick_replies(
                "user-1",
                "Сонгоно уу",
                [QuickReply(title="Маш урт гарчигтай товчлуур нэг", payload="A")] * 15,
            )

        message = mock_request.call_args.kwargs["json"]["message"]
        assert len(message["quick_replies"]) == 13
        assert all(len(reply["title"]) <= 20 for reply in message["quick_replies"])

    @pytest.mark.asyncio
    async def test_empty_quick_replies_send_plain_text(self, messenger):
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = Result.success({})
            await messenger.send_quick_replies("user-1", "hi", [])
        assert mock_request.call_args.kwargs["json"]["message"] == {"text": "hi"}

    @pytest.mark.asyncio
    async def test_gallery_order_and_confirm_buttons(self, messenger):
        cards = [ProductCard(name=f"Бараа {i}", price=1000 * i, image_url=f"https://cdn/{i}.jpg", product_id=str(i)) for i in range(12)]
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = Result.success({})
            await messenger.send_image_gallery("user-1", cards)
            await messenger.send_image_gallery("user-1", cards[:2], confirm_mode=True)

        ordered = mock_request.call_args_list[0].kwargs["json"]["message"]["attachment"]["payload"]["elements"]
        confirm = mock_request.call_args_list[1].kwargs["json"]["message"]["attachment"]["payload"]["elements"]
        assert len(ordered) == 10
        assert ordered[1]["buttons"][0]["payload"] == "ORDER_1"
        assert ordered[1]["subtitle"] == "1,000₮"
        assert confirm[0]["buttons"][0] == {"type": "postback", "title": "Энэ мөн", "payload": "CONFIRM_Бараа 0"}

    @pytest.mark.asyncio
    async def test_empty_gallery_is_not_sent(self, messenger):
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            result = await messenger.send_image_gallery("user-1", [])
        assert result.ok is False
        mock_request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_sender_action(self, messenger):
        result = await messenger.send_sender_action("user-1", "dance")
        assert result.ok is False


class TestProfileAndComments:
    @pytest.mark.asyncio
    async def test_fetch_profile_name_from_first_and_last(self, messenger):
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = Result.success({"first_name": "Бат", "last_name": "Болд"})
            assert await messenger.fetch_profile_name("user-1", Platform.MESSENGER) == "Бат Болд"

    @pytest.mark.asyncio
    async def test_fetch_profile_name_instagram_username(self, messenger):
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = Result.success({"username": "bat_mn"})
            assert await messenger.fetch_profile_name("ig-user", Platform.INSTAGRAM) == "bat_mn"
        assert mock_request.call_args.kwargs["params"] == {"fields": "username,name"}

    @pytest.mark.asyncio
    async def test_fetch_profile_name_failure(self, messenger):
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = Result.failure("nope")
            assert await messenger.fetch_profile_name("user-1", Platform.MESSENGER) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("platform, edge", [(Platform.MESSENGER, "comments"), (Platform.INSTAGRAM, "replies")])
    async def test_reply_to_comment_edge(self, messenger, platform, edge):
        with patch.object(messenger, "_make_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = Result.success({})
            await messenger.reply_to_comment("c-1", "hello", platform)
        assert mock_request.call_args[0] == ("POST", f"c-1/{edge}")
