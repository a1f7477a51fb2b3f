"""Minimal Telegram Bot API client."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from config import require_bot_token, settings


class TelegramBotAPIError(RuntimeError):
    """Bot API call could not be completed or returned `ok: false`."""


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


async def call_bot_api(
    method: str,
    payload: Dict[str, Any],
    *,
    timeout: Optional[float] = None,
) -> Any:
    """Invoke a Bot API method and return its `result` field."""
    token = require_bot_token()
    url = f"{settings.TELEGRAM_API_BASE.rstrip('/')}/bot{token}/{method}"
    bound = float(timeout if timeout is not None else settings.TELEGRAM_TIMEOUT_SECONDS)

    try:
        async with _http_client(bound) as client:
            response = await client.post(url, json=payload)
    except httpx.HTTPError as exc:
        raise TelegramBotAPIError(f"{method} request failed: {exc.__class__.__name__}") from exc

    try:
        data = response.json()
    except ValueError as exc:
        raise TelegramBotAPIError(f"{method} returned non-JSON body (HTTP {response.status_code})") from exc

    if not isinstance(data, dict) or not data.get("ok"):
        description = data.get("description") if isinstance(data, dict) else None
        raise TelegramBotAPIError(f"{method} failed: {description or f'HTTP {response.status_code}'}")
    return data.get("result")
