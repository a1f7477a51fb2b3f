"""Telegram webhook for Stars payments (pre-checkout and successful payment)."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from services.credit_packs import PACK_CURRENCY, CreditPack, get_credit_pack
from services.credits import add_purchased_credits, get_or_create_user
from services.errors import Unauthorized
from services.invoices import parse_invoice_payload
from services.telegram_auth import TelegramIdentity
from services.telegram_bot import TelegramBotAPIError, call_bot_api

router = APIRouter()
logger = logging.getLogger(__name__)


def _check_secret(received: Optional[str]) -> None:
    expected = (settings.TELEGRAM_WEBHOOK_SECRET or "").strip()
    if not expected:
        logger.warning("Webhook call refused: TELEGRAM_WEBHOOK_SECRET is not configured")
        raise Unauthorized("webhook_secret_unset")
    if not received or not hmac.compare_digest(received, expected):
        raise Unauthorized("bad_webhook_secret")


def _pack_for_payment(payload: Optional[str], currency: Any, total_amount: Any) -> Optional[CreditPack]:
    parsed = parse_invoice_payload(payload)
    if parsed is None:
        return None
    pack = get_credit_pack(parsed[0])
    if pack is None or currency != PACK_CURRENCY:
        return None
    try:
        if int(total_amount) != pack.price:
            return None
    except (TypeError, ValueError):
        return None
    return pack


def _sender_id(sender: Dict[str, Any]) -> Optional[int]:
    try:
        return int(sender["id"])
    except (KeyError, TypeError, ValueError):
        return None


def _identity_from_sender(user_id: int, sender: Dict[str, Any]) -> TelegramIdentity:
    return TelegramIdentity(
        user_id=user_id,
        username=sender.get("username") or None,
        first_name=sender.get("first_name") or None,
        last_name=sender.get("last_name") or None,
        language_code=sender.get("language_code") or None,
    )


async def _answer_pre_checkout(query: Dict[str, Any]) -> Dict[str, Any]:
    pack = _pack_for_payment(query.get("invoice_payload"), query.get("currency"), query.get("total_amount"))
    answer: Dict[str, Any] = {"pre_checkout_query_id": query.get("id"), "ok": pack is not None}
    if pack is None:
        answer["error_message"] = "This pack is no longer available."
    try:
        await call_bot_api("answerPreCheckoutQuery", answer)
    except TelegramBotAPIError as exc:
        logger.warning("answerPreCheckoutQuery failed for %s: %s", query.get("id"), exc)
    return {"ok": True, "handled": "pre_checkout_query", "accepted": pack is not None}


async def _credit_successful_payment(message: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    payment = message.get("successful_payment") or {}
    sender = message.get("from") or {}
    sender_id = _sender_id(sender) if isinstance(sender, dict) else None
    charge_id = str(payment.get("telegram_payment_charge_id") or "").strip()
    pack = _pack_for_payment(
        payment.get("invoice_payload"),
        payment.get("currency"),
        payment.get("total_amount"),
    )
    if pack is None or not charge_id or sender_id is None:
        logger.warning("Unrecognised successful_payment %s: %s", charge_id or "?", payment.get("invoice_payload"))
        return {"ok": True, "handled": "successful_payment", "credited": False}

    user = await get_or_create_user(db, _identity_from_sender(sender_id, sender))
    credited = await add_purchased_credits(
        db,
        user.id,
        credits=pack.credits,
        billing_reference=charge_id,
        pack_id=pack.id,
    )
    if credited:
        logger.info("Credited %s credits to user %s for charge %s", pack.credits, user.id, charge_id)
    return {"ok": True, "handled": "successful_payment", "credited": credited}


@router.post("/webhook")
async def telegram_webhook(
    update: Dict[str, Any],
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle payment updates; every other update is acknowledged and ignored.

    Requests must carry the configured secret token. Without a configured
    secret every call is refused.
    """
    _check_secret(secret_token)

    query = update.get("pre_checkout_query")
    if isinstance(query, dict):
        return await _answer_pre_checkout(query)

    message = update.get("message")
    if isinstance(message, dict) and isinstance(message.get("successful_payment"), dict):
        return await _credit_successful_payment(message, db)

    return {"ok": True, "handled": None}
