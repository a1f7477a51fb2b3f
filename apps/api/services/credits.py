"""User ledger: balances, credit movements and generation history."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_ledger import CreditLedger
from models.generation import (
    GENERATION_COMPLETED,
    GENERATION_FAILED,
    GENERATION_IN_PROGRESS,
    Generation,
)
from models.prompt_suggestion import PromptSuggestion
from models.user import User
from services.telegram_auth import TelegramIdentity

logger = logging.getLogger(__name__)

TERMINAL_GENERATION_STATUSES = (GENERATION_COMPLETED, GENERATION_FAILED)
REFERRAL_PARAM_PATTERN = re.compile(r"^ref_(\d{1,20})$")


def _referrer_from_start_param(start_param: Optional[str], user_id: int) -> Optional[int]:
    match = REFERRAL_PARAM_PATTERN.match(str(start_param or "").strip())
    if not match:
        return None
    referrer = int(match.group(1))
    return referrer if referrer != user_id else None


async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_credit_balance(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(select(User.credits).where(User.id == user_id))
    return int(result.scalar() or 0)


def _ledger_entry(
    user_id: int,
    *,
    entry_type: str,
    delta_credits: int,
    balance_after: Optional[int],
    reason: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    billing_provider: Optional[str] = None,
    billing_reference: Optional[str] = None,
) -> CreditLedger:
    return CreditLedger(
        id=str(uuid.uuid4()),
        user_id=user_id,
        entry_type=entry_type,
        delta_credits=int(delta_credits),
        balance_after=balance_after,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        billing_provider=billing_provider,
        billing_reference=billing_reference,
    )


async def get_or_create_user(db: AsyncSession, identity: TelegramIdentity) -> User:
    """
    Create the user on first contact or refresh display fields of an existing one.

    New users start with `BONUS_CREDITS`. The balance of an existing user is
    never rewritten here.
    """
    user = await get_user(db, identity.user_id)
    if user is not None:
        changed = False
        for field in ("username", "first_name", "last_name", "language_code"):
            value = getattr(identity, field)
            if value is not None and getattr(user, field) != value:
                setattr(user, field, value)
                changed = True
        if changed:
            await db.commit()
        return user

    bonus = max(int(settings.BONUS_CREDITS), 0)
    user = User(
        id=identity.user_id,
        username=identity.username,
        first_name=identity.first_name,
        last_name=identity.last_name,
        language_code=identity.language_code,
        credits=bonus,
        referred_by=_referrer_from_start_param(identity.start_param, identity.user_id),
    )
    db.add(user)
    if bonus:
        db.add(
            _ledger_entry(
                identity.user_id,
                entry_type="signup_bonus",
                delta_credits=bonus,
                balance_after=bonus,
                reason="Starting bonus",
            )
        )
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent first contact created the row first.
        await db.rollback()
        existing = await get_user(db, identity.user_id)
        if existing is None:
            raise
        return existing
    logger.info("Created user %s with %s bonus credits", identity.user_id, bonus)
    return user


async def spend_one_credit(
    db: AsyncSession,
    user_id: int,
    *,
    reason: str = "Image generation",
) -> bool:
    """Atomically take one credit if the balance is positive."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.credits > 0)
        .values(credits=User.credits - 1)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False

    balance = await get_credit_balance(db, user_id)
    db.add(
        _ledger_entry(
            user_id,
            entry_type="debit",
            delta_credits=-1,
            balance_after=balance,
            reason=reason,
        )
    )
    await db.commit()
    return True


async def refund_one_credit(
    db: AsyncSession,
    user_id: int,
    *,
    reason: str = "Generation refund",
    reference_id: Optional[str] = None,
) -> int:
    """Return one credit to the user and report the new balance."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=User.credits + 1)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.warning("Refund skipped: user %s not found", user_id)
        return 0

    balance = await get_credit_balance(db, user_id)
    db.add(
        _ledger_entry(
            user_id,
            entry_type="refund",
            delta_credits=1,
            balance_after=balance,
            reason=reason,
            reference_type="generation" if reference_id else None,
            reference_id=reference_id,
        )
    )
    await db.commit()
    return balance


async def add_purchased_credits(
    db: AsyncSession,
    user_id: int,
    *,
    credits: int,
    billing_reference: str,
    pack_id: Optional[str] = None,
    provider: str = "telegram_stars",
) -> bool:
    """Credit a paid pack once per billing reference. Returns False for duplicates."""
    grant = int(credits)
    if grant <= 0:
        raise ValueError("credits must be greater than 0")

    existing = await db.execute(
        select(CreditLedger.id).where(CreditLedger.billing_reference == billing_reference)
    )
    if existing.scalar_one_or_none():
        return False

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=User.credits + grant)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise LookupError(f"user {user_id} not found")

    balance = await get_credit_balance(db, user_id)
    db.add(
        _ledger_entry(
            user_id,
            entry_type="purchase",
            delta_credits=grant,
            balance_after=balance,
            reason="Credit pack purchase",
            reference_type="credit_pack" if pack_id else None,
            reference_id=pack_id,
            billing_provider=provider,
            billing_reference=billing_reference,
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return False
    return True


async def record_generation_start(
    db: AsyncSession,
    user_id: int,
    *,
    prompt: str,
    aspect_ratio: str,
    task_id: str,
    created_at: Optional[datetime] = None,
) -> Generation:
    generation = Generation(
        id=str(uuid.uuid4()),
        user_id=user_id,
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        task_id=task_id,
        status=GENERATION_IN_PROGRESS,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(generation)
    await db.commit()
    return generation


async def finalize_generation(
    db: AsyncSession,
    task_id: str,
    status: str,
    result_url: Optional[str] = None,
) -> bool:
    """Move an in-progress record to a terminal status; no-op if it already left IN_PROGRESS."""
    if status not in TERMINAL_GENERATION_STATUSES:
        raise ValueError(f"not a terminal status: {status}")

    result = await db.execute(
        update(Generation)
        .where(Generation.task_id == task_id, Generation.status == GENERATION_IN_PROGRESS)
        .values(
            status=status,
            result_url=result_url,
            completed_at=datetime.now(timezone.utc),
        )
    )
    await db.commit()
    return result.rowcount == 1


async def set_last_result(db: AsyncSession, user_id: int, url: str) -> None:
    await db.execute(update(User).where(User.id == user_id).values(last_result_url=url))
    await db.commit()


async def list_history(db: AsyncSession, user_id: int, limit: int) -> List[Generation]:
    result = await db.execute(
        select(Generation)
        .where(Generation.user_id == user_id)
        .order_by(Generation.created_at.desc(), Generation.id.desc())
        .limit(max(int(limit), 1))
    )
    return list(result.scalars().all())


async def list_prompt_suggestions(db: AsyncSession, limit: int) -> List[PromptSuggestion]:
    result = await db.execute(
        select(PromptSuggestion)
        .order_by(PromptSuggestion.sort_order.asc(), PromptSuggestion.id.asc())
        .limit(max(int(limit), 1))
    )
    return list(result.scalars().all())
