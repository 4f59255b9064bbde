"""Async Gmail API client for newsletter ingestion.

This module lists and fetches recent messages through the Gmail REST API
and converts them into Newsletter objects for pipeline processing.

Features:
    - OAuth refresh-token exchange for a fresh access token
    - Recursive text extraction from multipart MIME payloads
    - HTML-only messages reduced to plain text
    - Per-message parse failures skipped without failing the batch

Error Handling Strategy:
    - HTTP errors from the API raise GmailError with the status code
    - Network errors and timeouts are wrapped in GmailError
    - A message that cannot be parsed is logged and skipped
"""

import asyncio
import base64
import html
import logging
import re
import ssl
from datetime import datetime, timezone
from typing import Any

import aiohttp
import certifi

from models.newsletter import Newsletter

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
TOKEN_URL = "https://oauth2.googleapis.com/token"

_EMAIL_IN_BRACKETS = re.compile(r"<(.+?)>")
_NAME_BEFORE_BRACKETS = re.compile(r"^(.+?)\s*<")
_SCRIPT_STYLE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLOCK_TAGS = re.compile(r"<(br|/p|/div|/tr|/h[1-6]|/li)\b[^>]*>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]+>")
_BLANK_LINES = re.compile(r"\n\s*\n+")


class GmailError(Exception):
    """Raised when the Gmail API (or the token endpoint) fails."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


def _ssl_context() -> ssl.SSLContext:
    """SSL context using the certifi CA bundle."""
    return ssl.create_default_context(cafile=certifi.where())


def extract_email(from_header: str) -> str:
    """Email address from a From header ('Name <a@b.c>' or bare address)."""
    match = _EMAIL_IN_BRACKETS.search(from_header)
    return (match.group(1) if match else from_header).strip()


def extract_name(from_header: str) -> str:
    """Display name from a From header, without quotes; '' if absent."""
    match = _NAME_BEFORE_BRACKETS.match(from_header)
    return match.group(1).replace('"', "").strip() if match else ""


def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 body data (padding optional)."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def html_to_text(markup: str) -> str:
    """Crude HTML to text reduction for HTML-only newsletters."""
    text = _SCRIPT_STYLE.sub("", markup)
    text = _BLOCK_TAGS.sub("\n", text)
    text = _TAGS.sub("", text)
    text = html.unescape(text)
    text = "\n".join(line.strip() for line in text.splitlines())
    return _BLANK_LINES.sub("\n\n", text).strip()


def _collect_parts(payload: dict[str, Any], mime_type: str) -> list[str]:
    """Decoded bodies of all parts with the given MIME type, depth first."""
    found = []
    body = payload.get("body") or {}
    if payload.get("mimeType") == mime_type and body.get("data"):
        found.append(decode_base64url(body["data"]))
    for part in payload.get("parts") or []:
        found.extend(_collect_parts(part, mime_type))
    return found


def extract_content(payload: dict[str, Any]) -> str:
    """Plain-text content of a message payload.

    Prefers text/plain parts; falls back to text/html reduced to text.
    """
    plain = _collect_parts(payload, "text/plain")
    if plain:
        return "".join(plain)
    markup = _collect_parts(payload, "text/html")
    if markup:
        return html_to_text("".join(markup))
    return ""


def parse_message(message: dict[str, Any], max_chars: int = 5000, user_id: str = "default") -> Newsletter | None:
    """Convert a Gmail API message (format=full) into a Newsletter.

    Returns:
        Newsletter, or None if the message is malformed
    """
    try:
        payload = message["payload"]
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        from_header = headers.get("from", "")
        received = datetime.fromtimestamp(int(message["internalDate"]) / 1000, timezone.utc)

        return Newsletter(
            user_id=user_id,
            gmail_message_id=message["id"],
            thread_id=message.get("threadId", ""),
            subject=headers.get("subject", ""),
            sender_email=extract_email(from_header).lower(),
            sender_name=extract_name(from_header),
            received_date=received,
            content=extract_content(payload)[:max_chars],
            labels=message.get("labelIds", []),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Message parse failed | id=%s error=%s", message.get("id", "?"), e)
        return None


async def refresh_access_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    timeout: int = 30,
) -> str:
    """Exchange a refresh token for a new access token.

    Raises:
        GmailError: If the token endpoint rejects the request
    """
    data = {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                TOKEN_URL,
                data=data,
                timeout=aiohttp.ClientTimeout(total=timeout),
                ssl=_ssl_context(),
            ) as resp:
                body = await resp.json(content_type=None)
                if resp.status != 200 or "access_token" not in body:
                    error = body.get("error_description") or body.get("error") or "unknown error"
                    raise GmailError(f"Token refresh failed: {error}", status=resp.status)
                logger.info("Gmail access token refreshed | expires_in=%s", body.get("expires_in"))
                return body["access_token"]
    except aiohttp.ClientError as e:
        raise GmailError(f"Token refresh failed: {type(e).__name__}: {e}") from e
    except asyncio.TimeoutError as e:
        raise GmailError(f"Token refresh timed out after {timeout}s") from e


class GmailClient:
    """Minimal Gmail REST client bound to one OAuth access token.

    Example:
        >>> async with GmailClient(token) as gmail:
        ...     newsletters = await gmail.fetch_recent_newsletters("newer_than:1d")
    """

    def __init__(self, access_token: str, timeout: int = 30, user_id: str = "default"):
        self.access_token = access_token
        self.timeout = timeout
        self.user_id = user_id
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "GmailClient":
        self._session = aiohttp.ClientSession(
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if self._session is None:
            raise GmailError("GmailClient used outside of 'async with'")
        url = f"{GMAIL_API_BASE}/{path}"
        try:
            async with self._session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                ssl=_ssl_context(),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise GmailError(f"Gmail API error: HTTP {resp.status}: {text[:200]}", status=resp.status)
                return await resp.json()
        except aiohttp.ClientError as e:
            raise GmailError(f"Gmail API error: {type(e).__name__}: {e}") from e
        except asyncio.TimeoutError as e:
            raise GmailError(f"Gmail API request timed out after {self.timeout}s") from e

    async def list_message_ids(self, query: str, max_results: int = 10) -> list[str]:
        """IDs of messages matching a Gmail search query, newest first."""
        data = await self._get("messages", {"q": query, "maxResults": str(max_results)})
        return [m["id"] for m in data.get("messages", [])]

    async def get_message(self, message_id: str) -> dict[str, Any]:
        """Full message resource."""
        return await self._get(f"messages/{message_id}", {"format": "full"})

    async def fetch_recent_newsletters(
        self,
        query: str = "newer_than:1d",
        max_results: int = 10,
        max_messages: int = 5,
        max_chars: int = 5000,
    ) -> list[Newsletter]:
        """List matching messages and parse up to max_messages of them.

        Messages are fetched one at a time; failures to fetch a single
        message are logged and skipped.
        """
        ids = await self.list_message_ids(query, max_results)
        newsletters = []
        for message_id in ids[:max_messages]:
            try:
                message = await self.get_message(message_id)
            except GmailError as e:
                logger.warning("Message fetch failed | id=%s error=%s", message_id, e)
                continue
            parsed = parse_message(message, max_chars=max_chars, user_id=self.user_id)
            if parsed:
                newsletters.append(parsed)

        logger.info("Mailbox fetched | listed=%d parsed=%d query=%s", len(ids), len(newsletters), query)
        return newsletters
