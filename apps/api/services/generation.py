"""Single-request generation lifecycle: debit, submit, poll, reconcile."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import require_freepik_api_key, settings
from models.generation import GENERATION_COMPLETED, GENERATION_FAILED, GENERATION_IN_PROGRESS
from services.credits import (
    finalize_generation,
    get_credit_balance,
    record_generation_start,
    refund_one_credit,
    set_last_result,
    spend_one_credit,
)
from services.errors import GenerationError, GenerationFailed, InsufficientCredits, ProviderError
from services.freepik import TASK_COMPLETED, MysticTask, create_mystic_task, get_mystic_task

logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    status: str
    task_id: str
    url: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == GENERATION_COMPLETED


async def _wait_for_terminal(api_key: str, task_id: str) -> Optional[MysticTask]:
    """
    Poll until the task is terminal or the deadline passes (returns None).

    Sleeps and status calls are both cut off at the deadline, so the wait
    never outlives it by more than scheduling jitter.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + float(settings.GENERATION_POLL_DEADLINE_SECONDS)
    interval = max(float(settings.GENERATION_POLL_INTERVAL_SECONDS), 0.0)

    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(interval, remaining))

        remaining = deadline - loop.time()
        if remaining <= 0:
            return None
        try:
            task = await asyncio.wait_for(get_mystic_task(api_key, task_id), timeout=remaining)
        except asyncio.TimeoutError:
            logger.info("Status call for %s cut off at the poll deadline", task_id)
            return None
        if task.is_terminal:
            return task


async def run_generation(
    db: AsyncSession,
    user_id: int,
    prompt: str,
    aspect_ratio: str,
) -> GenerationOutcome:
    """
    Run one generation request to completion or to the poll deadline.

    Credits:
        One credit is taken before submission. It is refunded when the
        provider reports FAILED or when submitting/polling raises. A task
        still running at the deadline keeps the debit and its record stays
        IN_PROGRESS; nothing continues polling it afterwards.

    Raises:
        ConfigurationError: Provider key missing (nothing debited).
        InsufficientCredits: Balance was zero (nothing submitted).
        ProviderError: Submission rejected (refunded).
        GenerationFailed: Provider reported FAILED (refunded).
        GenerationError: Unexpected error after submission (refunded).
    """
    api_key = require_freepik_api_key()

    if not await spend_one_credit(db, user_id):
        raise InsufficientCredits(await get_credit_balance(db, user_id))

    try:
        task = await create_mystic_task(api_key, prompt, aspect_ratio)
    except Exception as exc:
        logger.warning("Mystic submission failed for user %s: %s", user_id, exc)
        await refund_one_credit(db, user_id, reason="Submission failed")
        if isinstance(exc, ProviderError):
            raise
        raise ProviderError(f"Submission failed: {exc.__class__.__name__}") from exc

    task_id = task.task_id
    try:
        await record_generation_start(
            db,
            user_id,
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            task_id=task_id,
        )
        final = await _wait_for_terminal(api_key, task_id)
    except Exception as exc:
        logger.exception("Generation %s for user %s errored; refunding", task_id, user_id)
        await db.rollback()
        await refund_one_credit(db, user_id, reference_id=task_id)
        raise GenerationError(f"Generation error: {exc.__class__.__name__}") from exc

    if final is None:
        logger.info("Generation %s still running at deadline; returning task id", task_id)
        return GenerationOutcome(status=GENERATION_IN_PROGRESS, task_id=task_id)

    if final.status == TASK_COMPLETED and final.generated:
        url = final.generated[0]
        await finalize_generation(db, task_id, GENERATION_COMPLETED, url)
        await set_last_result(db, user_id, url)
        return GenerationOutcome(status=GENERATION_COMPLETED, task_id=task_id, url=url)

    logger.info("Generation %s ended as %s with %d results", task_id, final.status, len(final.generated))
    await finalize_generation(db, task_id, GENERATION_FAILED)
    await refund_one_credit(db, user_id, reference_id=task_id)
    raise GenerationFailed(task_id)
