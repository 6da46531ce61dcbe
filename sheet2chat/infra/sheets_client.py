# sheet2chat/infra/sheets_client.py
"""
Google Sheets API v4 client (service-account auth).

Authentication:
- A service-account JSON (``google_service_account_json``) supplies
  ``client_email`` and ``private_key``.
- An RS256 JWT is signed with PyJWT and exchanged at the OAuth
  token endpoint for a bearer token, cached until shortly before expiry.

Rows and columns are 1-indexed everywhere in this module, matching the
spreadsheet UI and the A1 notation.
"""
from __future__ import annotations

import json
import time
from typing import Any, Optional, Sequence
from urllib.parse import quote

import aiohttp
import jwt

from sheet2chat.infra.http_client import get_sheets_session
from sheet2chat.infra.logging_config import get_logger
from sheet2chat.infra.metrics import inc_counter

logger = get_logger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

TOKEN_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_MARGIN_SECONDS = 60


class SheetsAPIError(Exception):
    """Error calling the Google Sheets or OAuth API.

    Attributes:
        status: HTTP status code (0 for connection-level and auth-setup errors).
    """

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"Sheets API error {status}: {message}")


# ---------------------------------------------------------------------------
# A1 helpers
# ---------------------------------------------------------------------------

def column_letter(col: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA."""
    if col < 1:
        raise ValueError(f"Column index must be >= 1, got {col}")
    letters = ""
    while col > 0:
        col, rem = divmod(col - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def cell_range(sheet_name: str, row: int, col: int) -> str:
    return f"{sheet_name}!{column_letter(col)}{row}"


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class ServiceAccountTokenProvider:
    """Signs service-account JWTs and caches the exchanged access token."""

    def __init__(self, service_account_json: Optional[str]):
        self._raw = service_account_json
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    def _load_account(self) -> dict:
        if not self._raw:
            raise SheetsAPIError(0, "google_service_account_json is not configured")
        try:
            account = json.loads(self._raw)
        except ValueError as exc:
            raise SheetsAPIError(0, f"Invalid service account JSON: {exc}") from exc
        if not account.get("client_email") or not account.get("private_key"):
            raise SheetsAPIError(0, "Service account JSON lacks client_email/private_key")
        return account

    def build_assertion(self, now: Optional[int] = None) -> str:
        account = self._load_account()
        issued_at = int(now if now is not None else time.time())
        claims = {
            "iss": account["client_email"],
            "scope": SHEETS_SCOPE,
            "aud": OAUTH_TOKEN_URL,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        }
        # Service-account keys are stored with literal "\n" when passed via env
        pem = account["private_key"].replace("\\n", "\n")
        try:
            return jwt.encode(claims, pem, algorithm="RS256")
        except (ValueError, jwt.PyJWTError) as exc:
            raise SheetsAPIError(0, f"Cannot sign service account assertion: {exc}") from exc

    async def get_token(self) -> str:
        if self._token and time.time() < self._expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._token

        assertion = self.build_assertion()
        session = get_sheets_session()
        try:
            async with session.post(
                OAUTH_TOKEN_URL,
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                    "assertion": assertion,
                },
            ) as resp:
                body = await resp.json(content_type=None)
                if resp.status != 200 or not body or "access_token" not in body:
                    logger.error(f"OAuth token exchange failed: status={resp.status}")
                    inc_counter("sheets_auth_error")
                    raise SheetsAPIError(resp.status, "OAuth token exchange failed")
        except aiohttp.ClientError as exc:
            raise SheetsAPIError(0, f"OAuth connection error: {exc}") from exc

        self._token = body["access_token"]
        self._expires_at = time.time() + int(body.get("expires_in", TOKEN_LIFETIME_SECONDS))
        logger.debug("Google access token refreshed")
        return self._token


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GoogleSheetsClient:
    """Range-based read / write / append over the Sheets values API."""

    def __init__(self, token_provider: ServiceAccountTokenProvider):
        self._tokens = token_provider

    async def read_range(self, sheet_id: str, a1_range: str) -> list[list[str]]:
        """Values of ``a1_range``; empty list when the range has no data."""
        url = f"{SHEETS_API_BASE}/{sheet_id}/values/{quote(a1_range, safe='')}"
        body = await self._request("GET", url)
        return (body or {}).get("values", [])

    async def write_cell(self, sheet_id: str, sheet_name: str, row: int, col: int, value: Any) -> None:
        a1 = cell_range(sheet_name, row, col)
        url = f"{SHEETS_API_BASE}/{sheet_id}/values/{quote(a1, safe='')}?valueInputOption=USER_ENTERED"
        await self._request("PUT", url, json_body={"values": [[value]]})
        logger.info(f"Sheet cell written: {a1}")

    async def append_row(self, sheet_id: str, sheet_name: str, values: Sequence[Any]) -> dict:
        """Append one row after the sheet's data; returns ``{"updatedRange": ...}``."""
        a1 = f"{sheet_name}!A1"
        url = (
            f"{SHEETS_API_BASE}/{sheet_id}/values/{quote(a1, safe='')}:append"
            "?valueInputOption=USER_ENTERED&insertDataOption=INSERT_ROWS"
        )
        body = await self._request("POST", url, json_body={"values": [list(values)]})
        updated = ((body or {}).get("updates") or {}).get("updatedRange")
        logger.info(f"Sheet row appended: {updated}")
        return {"updatedRange": updated}

    async def get_headers(self, sheet_id: str, sheet_name: str) -> list[str]:
        rows = await self.read_range(sheet_id, f"{sheet_name}!1:1")
        return [str(h) for h in rows[0]] if rows else []

    async def _request(self, method: str, url: str, json_body: dict | None = None) -> dict | None:
        token = await self._tokens.get_token()
        session = get_sheets_session()
        try:
            async with session.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}"},
                json=json_body,
            ) as resp:
                if resp.status == 200:
                    return await resp.json(content_type=None)

                text = (await resp.text())[:300]
                logger.error(f"Sheets API error: {method} status={resp.status}, body={text}")
                inc_counter("sheets_api_error", status=str(resp.status))
                raise SheetsAPIError(resp.status, text)
        except aiohttp.ClientError as exc:
            logger.error(f"Sheets API connection error: {exc}", exc_info=True)
            inc_counter("sheets_api_connection_error")
            raise SheetsAPIError(0, str(exc)) from exc
