# sheet2chat/infra/chatwork_client.py
"""
Chatwork API v2 client.

Three remote operations are used by the engine:
- Send a message to a room
- Create a task assigned to room members
- List room members (assignee validation, admin UI)

Error classification (ChatworkAPIError.retryable):
- Token invalid (401)          -> NOT retryable
- No access to room (403)      -> NOT retryable
- Room not found (404)         -> NOT retryable
- Rate limiting (429)          -> retryable
- Network / timeout            -> retryable
- Unknown server error         -> retryable

The engine never retries; ``retryable`` is informational for logs and
error reports.

HTTP session lifecycle:
- Uses the shared chat session from sheet2chat.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio
import re
from datetime import datetime
from typing import Optional, Sequence

import aiohttp

from sheet2chat.infra.http_client import get_chat_session
from sheet2chat.infra.logging_config import get_logger
from sheet2chat.infra.metrics import inc_counter

logger = get_logger(__name__)

CHATWORK_API_BASE = "https://api.chatwork.com/v2"

_ROOM_PREFIX = re.compile(r"^\D+")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_room_id(room_id: object) -> str:
    """Strip a non-numeric prefix such as ``rid`` from a room id."""
    return _ROOM_PREFIX.sub("", str(room_id).strip())


def format_mention(account_id: str, account_name: str, message: str) -> str:
    """Prefix a message with a ``[To:id]`` mention line."""
    return f"[To:{account_id}] {account_name}さん\n{message}"


def _headers(token: str) -> dict:
    return {"X-ChatWorkToken": token}


def _room_url(room_id: object, resource: str) -> str:
    return f"{CHATWORK_API_BASE}/rooms/{normalize_room_id(room_id)}/{resource}"


# ---------------------------------------------------------------------------
# Error type
# ---------------------------------------------------------------------------

class ChatworkAPIError(Exception):
    """Error calling the Chatwork API.

    Attributes:
        status:    HTTP status code (0 for connection-level errors).
        message:   Response body or error text.
        retryable: Whether a later retry could succeed.
    """

    def __init__(self, status: int, message: str, *, retryable: bool = False):
        self.status = status
        self.retryable = retryable
        self.message = message
        super().__init__(f"Chatwork API error {status}: {message}")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ChatworkClient:
    """Async Chatwork client; the token is passed per call (one per promotion)."""

    async def send_message(
        self,
        token: str,
        room_id: str,
        body: str,
        self_unread: bool = False,
    ) -> dict:
        """
        Post a message to a room.

        Returns:
            ``{"message_id": "..."}``

        Raises:
            ChatworkAPIError
        """
        data = {"body": body, "self_unread": "1" if self_unread else "0"}
        result = await self._request("POST", _room_url(room_id, "messages"), token, data=data)
        logger.info(
            f"Chatwork message sent: room={normalize_room_id(room_id)}, "
            f"msg_id={(result or {}).get('message_id', 'unknown')}"
        )
        inc_counter("chatwork_outbound_sent", op="message")
        return result or {}

    async def create_task(
        self,
        token: str,
        room_id: str,
        body: str,
        assignee_ids: Sequence[str],
        due_at: Optional[datetime] = None,
        due_type: str = "date",
    ) -> dict:
        """
        Create a task assigned to ``assignee_ids``.

        ``due_at`` must be timezone-aware; it is sent as unix seconds.

        Returns:
            ``{"task_ids": [...]}``

        Raises:
            ChatworkAPIError
        """
        data = {"body": body, "to_ids": ",".join(str(a) for a in assignee_ids)}
        if due_at is not None:
            data["limit"] = str(int(due_at.timestamp()))
            data["limit_type"] = due_type

        result = await self._request("POST", _room_url(room_id, "tasks"), token, data=data)
        logger.info(
            f"Chatwork task created: room={normalize_room_id(room_id)}, "
            f"task_ids={(result or {}).get('task_ids', [])}"
        )
        inc_counter("chatwork_outbound_sent", op="task")
        return result or {}

    async def get_room_members(self, token: str, room_id: str) -> list[dict]:
        """
        List members of a room: ``[{"account_id": int, "name": str, "role": str}, ...]``.

        Raises:
            ChatworkAPIError
        """
        result = await self._request("GET", _room_url(room_id, "members"), token)
        return result if isinstance(result, list) else []

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        data: dict | None = None,
    ) -> dict | list | None:
        if not token:
            raise ChatworkAPIError(401, "Chatwork token is not configured", retryable=False)

        try:
            session = get_chat_session()
            async with session.request(method, url, headers=_headers(token), data=data) as resp:
                if 200 <= resp.status < 300:
                    return await _safe_response_json(resp)

                text = await _safe_response_text(resp)

                if resp.status in (401, 403, 404):
                    logger.error(f"Chatwork API rejected request: status={resp.status}, body={text}")
                    inc_counter("chatwork_outbound_error", status=str(resp.status))
                    raise ChatworkAPIError(resp.status, text, retryable=False)

                if resp.status == 429:
                    logger.warning("Chatwork API rate limit hit")
                    inc_counter("chatwork_outbound_rate_limited")
                    raise ChatworkAPIError(resp.status, text, retryable=True)

                logger.error(f"Chatwork API error: status={resp.status}, body={text}")
                inc_counter("chatwork_outbound_error", status=str(resp.status))
                raise ChatworkAPIError(resp.status, text, retryable=resp.status >= 500)

        except ChatworkAPIError:
            raise
        except asyncio.TimeoutError as exc:
            logger.error(f"Chatwork API timeout: {method} {url}")
            inc_counter("chatwork_outbound_timeout")
            raise ChatworkAPIError(0, "request timeout", retryable=True) from exc
        except aiohttp.ClientError as exc:
            logger.error(f"Chatwork API connection error: {exc}", exc_info=True)
            inc_counter("chatwork_outbound_connection_error")
            raise ChatworkAPIError(0, str(exc), retryable=True) from exc


async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | list | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except Exception:
        logger.warning(f"Chatwork API returned non-JSON body: status={resp.status}")
        return None


async def _safe_response_text(resp: aiohttp.ClientResponse, max_len: int = 300) -> str:
    """Read response body as text, truncated for safe logging."""
    try:
        text = await resp.text()
        return text[:max_len]
    except Exception:
        return "<unreadable>"
