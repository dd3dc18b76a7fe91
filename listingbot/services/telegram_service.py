from typing import Optional

import httpx

from listingbot.logging_config import get_logger

logger = get_logger("telegram_service")


class TelegramFileError(Exception):
    pass


class TelegramService:
    """Client for the Telegram Bot API: replies and attachment downloads."""

    DEFAULT_API_BASE_URL = "https://api.telegram.org"

    def __init__(self, bot_token: str, api_base_url: str = DEFAULT_API_BASE_URL, timeout_seconds: float = 30.0):
        self.bot_token = bot_token
        self.api_base_url = api_base_url.rstrip("/")
        self.base_url = f"{self.api_base_url}/bot{bot_token}"
        self.file_base_url = f"{self.api_base_url}/file/bot{bot_token}"
        self.timeout_seconds = timeout_seconds

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, json=data or {})
                return response.json()
        except Exception as e:
            logger.error(f"Telegram API error on {method}: {e}")
            return {"ok": False, "error": str(e)}

    def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: str = "HTML",
    ) -> dict:
        """Send message to Telegram chat."""
        data = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        return self._make_request("sendMessage", data)

    def get_file_path(self, file_id: str) -> str:
        """Resolve a file_id to the path used by the file download endpoint."""
        result = self._make_request("getFile", {"file_id": file_id})
        if not result.get("ok"):
            raise TelegramFileError(f"getFile failed for {file_id}: {result.get('description') or result.get('error')}")
        file_path = (result.get("result") or {}).get("file_path")
        if not file_path:
            raise TelegramFileError(f"getFile returned no file_path for {file_id}")
        return file_path

    async def download_file(self, file_path: str, *, max_bytes: int, timeout_seconds: float) -> bytes:
        """Stream a file from Telegram, refusing anything larger than max_bytes."""
        url = f"{self.file_base_url}/{file_path.lstrip('/')}"
        size_bytes = 0
        data = bytearray()
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    if not chunk:
                        continue
                    size_bytes += len(chunk)
                    if max_bytes and size_bytes > max_bytes:
                        raise TelegramFileError(f"File {file_path} exceeds {max_bytes} bytes")
                    data.extend(chunk)
        return bytes(data)
