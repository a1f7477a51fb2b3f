"""Telegram Stars invoice links for credit packs."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from services.credit_packs import PACK_CURRENCY, CreditPack
from services.errors import InvoiceError
from services.telegram_bot import TelegramBotAPIError, call_bot_api

logger = logging.getLogger(__name__)

INVOICE_PAYLOAD_PREFIX = "pack"


def build_invoice_payload(pack_id: str, user_id: int) -> str:
    return f"{INVOICE_PAYLOAD_PREFIX}:{pack_id}:{user_id}"


def parse_invoice_payload(payload: Optional[str]) -> Optional[Tuple[str, int]]:
    """Return `(pack_id, user_id)` for payloads built by `build_invoice_payload`."""
    parts = str(payload or "").split(":")
    if len(parts) != 3 or parts[0] != INVOICE_PAYLOAD_PREFIX or not parts[1]:
        return None
    try:
        return parts[1], int(parts[2])
    except ValueError:
        return None


async def create_pack_invoice_link(pack: CreditPack, user_id: int) -> str:
    """Create a Stars invoice link for the pack via `createInvoiceLink`."""
    try:
        url = await call_bot_api(
            "createInvoiceLink",
            {
                "title": pack.title,
                "description": pack.description,
                "payload": build_invoice_payload(pack.id, user_id),
                "provider_token": "",
                "currency": PACK_CURRENCY,
                "prices": [{"label": pack.title, "amount": pack.price}],
            },
        )
    except TelegramBotAPIError as exc:
        logger.warning("Invoice link for pack %s / user %s failed: %s", pack.id, user_id, exc)
        raise InvoiceError(str(exc)) from exc

    if not isinstance(url, str) or not url:
        raise InvoiceError("createInvoiceLink returned no link")
    return url
