"""
Thin async client for the Telegram Bot API. [REH][RM]

Only the calls the bridge needs: send/edit/delete text messages, chat actions,
file resolution and download, and webhook registration. Transport failures
are normalised into the bot's error taxonomy so callers never see raw httpx
exceptions.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from .exceptions import APIError, FileProcessingError, NotFoundError, TransientNetworkError
from .utils.logging import get_logger

logger = get_logger(__name__)

TELEGRAM_MAX_MESSAGE_CHARS = 4096

_NOT_FOUND_MARKERS = ("file not found", "invalid file_id", "wrong file_id", "file_id is invalid", "file reference expired")
_TOO_BIG_MARKERS = ("file is too big",)
_NOT_MODIFIED_MARKER = "message is not modified"


def is_not_modified_error(error: Exception) -> bool:
    """True when Telegram rejected an edit because the text is unchanged."""
    return isinstance(error, APIError) and _NOT_MODIFIED_MARKER in str(error).lower()


class TelegramClient:
    """Async Telegram Bot API client backed by a shared httpx.AsyncClient."""

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        download_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token or ""
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.download_timeout = download_timeout
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "TelegramClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        if self.client is not None:
            return
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
            transport=self._transport,
        )
        logger.info("🌐 Telegram client started", extra={"subsys": "telegram"})

    async def stop(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("🛑 Telegram client stopped", extra={"subsys": "telegram"})

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self.api_base}/file/bot{self.token}/{file_path.lstrip('/')}"

    async def _call(self, method: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """POST a Bot API method and return its ``result`` field."""
        if self.client is None:
            await self.start()

        try:
            response = await self.client.post(
                self._method_url(method),
                json=payload,
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Telegram {method} timed out: {type(e).__name__}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Telegram {method} transport error: {type(e).__name__}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code < 400 and body.get("ok"):
            return body.get("result")

        description = str(body.get("description") or response.reason_phrase or "unknown error")
        code = body.get("error_code") or response.status_code
        retry_after = (body.get("parameters") or {}).get("retry_after")
        message = f"Telegram {method} failed ({code}): {description}"
        lowered = description.lower()

        if code == 429:
            raise TransientNetworkError(message, retry_after=float(retry_after) if retry_after else None)
        if code >= 500:
            raise TransientNetworkError(message)
        if code == 404 or any(marker in lowered for marker in _NOT_FOUND_MARKERS):
            raise NotFoundError(message)
        if any(marker in lowered for marker in _TOO_BIG_MARKERS):
            raise FileProcessingError(message)
        raise APIError(message)

    async def send_message(self, chat_id: int, text: str, reply_to_message_id: Optional[int] = None) -> int:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text[:TELEGRAM_MAX_MESSAGE_CHARS]}
        if reply_to_message_id is not None:
            payload["reply_parameters"] = {"message_id": reply_to_message_id, "allow_sending_without_reply": True}
        result = await self._call("sendMessage", payload)
        return int(result["message_id"])

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> None:
        await self._call(
            "editMessageText",
            {"chat_id": chat_id, "message_id": message_id, "text": text[:TELEGRAM_MAX_MESSAGE_CHARS]},
        )

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        await self._call("sendChatAction", {"chat_id": chat_id, "action": action})

    @contextlib.asynccontextmanager
    async def typing(self, chat_id: int, interval: float = 4.0) -> AsyncIterator[None]:
        """Keep the typing indicator visible until the block exits (best effort)."""

        async def _keep_alive() -> None:
            while True:
                try:
                    await self.send_chat_action(chat_id, "typing")
                except Exception as e:
                    logger.debug(f"Typing indicator failed: {e}", extra={"subsys": "telegram", "chat_id": chat_id})
                await asyncio.sleep(interval)

        task = asyncio.create_task(_keep_alive())
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        result = await self._call("getFile", {"file_id": file_id})
        if not isinstance(result, dict) or not result.get("file_path"):
            raise NotFoundError(f"Telegram getFile returned no file_path for {file_id}")
        return result

    async def download_file(self, file_path: str) -> Tuple[bytes, Optional[str]]:
        """Download a resolved file path, returning (body, Content-Type)."""
        if self.client is None:
            await self.start()

        try:
            response = await self.client.get(self._file_url(file_path), timeout=self.download_timeout)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"File download timed out: {type(e).__name__}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"File download transport error: {type(e).__name__}") from e

        if response.status_code == 404:
            raise NotFoundError(f"File {file_path} not found on Telegram servers")
        if response.status_code >= 500:
            raise TransientNetworkError(f"File download failed with HTTP {response.status_code}")
        if response.status_code >= 400:
            raise APIError(f"File download failed with HTTP {response.status_code}")

        return response.content, response.headers.get("Content-Type")

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        await self._call("setWebhook", payload)
        logger.info("✅ Webhook registered", extra={"subsys": "telegram", "event": "webhook.set"})
