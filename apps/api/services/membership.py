"""Channel subscription gate."""

from __future__ import annotations

import logging

from config import settings
from services.errors import ConfigurationError
from services.telegram_bot import TelegramBotAPIError, call_bot_api

logger = logging.getLogger(__name__)

MEMBER_STATUSES = frozenset({"member", "administrator", "creator"})


def subscription_gate_enabled() -> bool:
    return bool(settings.REQUIRE_SUBSCRIPTION) and bool((settings.CHANNEL_USERNAME or "").strip())


async def is_channel_member(user_id: int) -> bool:
    """
    Check whether the user is subscribed to the configured channel.

    The gate fails open: when membership cannot be checked at all (network
    error, timeout, Bot API error, missing bot token) the user passes.
    Only an explicit non-member status denies access.
    """
    if not subscription_gate_enabled():
        return True

    channel = settings.CHANNEL_USERNAME.strip()
    try:
        result = await call_bot_api(
            "getChatMember",
            {"chat_id": channel, "user_id": user_id},
            timeout=settings.TELEGRAM_TIMEOUT_SECONDS,
        )
    except (TelegramBotAPIError, ConfigurationError) as exc:
        logger.warning("Membership check for user %s in %s skipped (fail-open): %s", user_id, channel, exc)
        return True

    status = str(result.get("status") or "") if isinstance(result, dict) else ""
    return status in MEMBER_STATUSES
