# sheet2chat/infra/http_client.py
"""
Process-wide aiohttp sessions, one per remote service.

Each outbound client asks for its session at call time, so the session is
created lazily inside the running event loop and re-created if something
closed it. ``close_all_sessions()`` belongs in application shutdown.

No retries are layered on top: a failed send is recorded by the dispatcher
and the batch moves on, so the timeouts below are the only bound on a call.
"""
from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionProfile:
    total_timeout: float
    connect_timeout: float
    pool_limit: int


CHAT_PROFILE = SessionProfile(total_timeout=25, connect_timeout=5, pool_limit=20)
SHEETS_PROFILE = SessionProfile(total_timeout=30, connect_timeout=5, pool_limit=10)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _session(name: str, profile: SessionProfile) -> aiohttp.ClientSession:
    current = _sessions.get(name)
    if current is not None and not current.closed:
        return current

    current = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=profile.total_timeout, connect=profile.connect_timeout),
        connector=aiohttp.TCPConnector(limit=profile.pool_limit, keepalive_timeout=30),
        headers={"User-Agent": "sheet2chat/1.0"},
    )
    _sessions[name] = current
    logger.debug(f"HTTP session '{name}' opened (pool limit {profile.pool_limit})")
    return current


def get_chat_session() -> aiohttp.ClientSession:
    """Chatwork REST API: messages, tasks, room members."""
    return _session("chat", CHAT_PROFILE)


def get_sheets_session() -> aiohttp.ClientSession:
    """Google Sheets values API and the OAuth token endpoint."""
    return _session("sheets", SHEETS_PROFILE)


async def close_all_sessions() -> None:
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug(f"HTTP session '{name}' closed")
