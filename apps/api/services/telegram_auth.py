"""Telegram Mini App init data verification."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode

from services.errors import Unauthorized


WEBAPP_SECRET_SALT = b"WebAppData"
MAX_CLOCK_SKEW_SECONDS = 60


@dataclass(frozen=True)
class TelegramIdentity:
    user_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language_code: Optional[str] = None
    start_param: Optional[str] = None
    auth_date: int = 0


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(WEBAPP_SECRET_SALT, bot_token.encode(), hashlib.sha256).digest()


def _data_check_string(fields: Dict[str, str]) -> str:
    return "\n".join(f"{key}={fields[key]}" for key in sorted(fields))


def _compute_hash(fields: Dict[str, str], bot_token: str) -> str:
    return hmac.new(_secret_key(bot_token), _data_check_string(fields).encode(), hashlib.sha256).hexdigest()


def sign_init_data(fields: Dict[str, Any], bot_token: str) -> str:
    """Build a signed init data string the way the Telegram client does."""
    normalized: Dict[str, str] = {}
    for key, value in fields.items():
        if key == "hash":
            continue
        if isinstance(value, (dict, list)):
            normalized[key] = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        else:
            normalized[key] = str(value)
    normalized["hash"] = _compute_hash({k: v for k, v in normalized.items() if k != "hash"}, bot_token)
    return urlencode(normalized)


def _optional_str(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def verify_init_data(
    init_data: Optional[str],
    bot_token: str,
    *,
    max_age_seconds: int = 86400,
    now: Optional[float] = None,
) -> TelegramIdentity:
    """
    Validate signed init data and extract the user identity.

    Args:
        init_data: Raw query-string payload sent by the mini app.
        bot_token: Token of the bot that launched the mini app.
        max_age_seconds: Maximum accepted age of `auth_date`; 0 disables the
            check. Dates more than `MAX_CLOCK_SKEW_SECONDS` ahead are rejected too.
        now: Override for the current unix time.

    Returns:
        The identity claimed by the `user` field.

    Raises:
        Unauthorized: With a machine-readable reason on any failed check.
    """
    raw = (init_data or "").strip()
    if not raw:
        raise Unauthorized("missing_init_data")

    try:
        pairs = parse_qsl(raw, keep_blank_values=True, strict_parsing=True)
    except ValueError:
        raise Unauthorized("malformed")
    if not pairs:
        raise Unauthorized("malformed")

    fields: Dict[str, str] = {}
    received_hash = ""
    for key, value in pairs:
        if key == "hash":
            received_hash = value.strip().lower()
            continue
        fields[key] = value

    if not received_hash:
        raise Unauthorized("hash_missing")

    expected_hash = _compute_hash(fields, bot_token)
    if not hmac.compare_digest(expected_hash, received_hash):
        raise Unauthorized("hash_mismatch")

    try:
        auth_date = int(fields.get("auth_date", ""))
    except ValueError:
        raise Unauthorized("auth_date_invalid")

    current = time.time() if now is None else now
    if max_age_seconds > 0:
        age = current - auth_date
        if age < -MAX_CLOCK_SKEW_SECONDS:
            raise Unauthorized("auth_date_in_future")
        if age > max_age_seconds:
            raise Unauthorized("expired")

    user_raw = fields.get("user")
    if not user_raw:
        raise Unauthorized("user_missing")
    try:
        user = json.loads(user_raw)
        user_id = int(user["id"])
    except (ValueError, TypeError, KeyError):
        raise Unauthorized("user_invalid")

    return TelegramIdentity(
        user_id=user_id,
        username=_optional_str(user.get("username")),
        first_name=_optional_str(user.get("first_name")),
        last_name=_optional_str(user.get("last_name")),
        language_code=_optional_str(user.get("language_code")),
        start_param=_optional_str(fields.get("start_param")),
        auth_date=auth_date,
    )
