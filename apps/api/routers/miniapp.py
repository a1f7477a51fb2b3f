"""Mini app API: profile, prompts, history, invoices and generation."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import build_referral_link, settings
from database import get_db
from models.generation import Generation
from models.prompt_suggestion import PromptSuggestion
from models.user import User
from routers.auth_scope import AuthContext, require_channel_member
from routers.rate_limit import rate_limit
from services.credit_packs import CREDIT_PACKS, get_credit_pack
from services.credits import get_or_create_user, list_history, list_prompt_suggestions
from services.errors import PackNotFound, PromptRequired, PromptTooLong
from services.freepik import normalize_aspect_ratio
from services.generation import run_generation
from services.invoices import create_pack_invoice_link

router = APIRouter()
logger = logging.getLogger(__name__)


class InvoiceRequest(BaseModel):
    pack_id: Optional[str] = None


class GenerateRequest(BaseModel):
    prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "credits": int(user.credits or 0),
        "referred_by": user.referred_by,
        "last_result_url": user.last_result_url,
        "created_at": _isoformat(user.created_at),
    }


def _serialize_generation(generation: Generation) -> Dict[str, Any]:
    return {
        "id": generation.id,
        "prompt": generation.prompt,
        "aspect_ratio": generation.aspect_ratio,
        "task_id": generation.task_id,
        "status": generation.status,
        "result_url": generation.result_url,
        "created_at": _isoformat(generation.created_at),
        "completed_at": _isoformat(generation.completed_at),
    }


def _serialize_prompt(item: PromptSuggestion) -> Dict[str, Any]:
    return {
        "id": item.id,
        "title": item.title,
        "prompt": item.prompt,
        "aspect_ratio": item.aspect_ratio,
        "preview_url": item.preview_url,
    }


@router.get("/prompts")
async def prompts(
    auth: AuthContext = Depends(require_channel_member),
    db: AsyncSession = Depends(get_db),
):
    items = await list_prompt_suggestions(db, settings.PROMPTS_LIMIT)
    return {"items": [_serialize_prompt(item) for item in items]}


@router.get("/me")
async def me(
    auth: AuthContext = Depends(require_channel_member),
    db: AsyncSession = Depends(get_db),
):
    """Current user, balance, credit packs and referral deep link."""
    user = await get_or_create_user(db, auth.identity)
    return {
        "user": _serialize_user(user),
        "deepLink": build_referral_link(user.id),
        "packs": [pack.to_dict() for pack in CREDIT_PACKS],
    }


@router.get("/history")
async def history(
    auth: AuthContext = Depends(require_channel_member),
    db: AsyncSession = Depends(get_db),
):
    items = await list_history(db, auth.user_id, settings.HISTORY_LIMIT)
    return {"items": [_serialize_generation(item) for item in items]}


@router.post("/invoice")
async def create_invoice(
    request: InvoiceRequest,
    _rate_limit: None = Depends(rate_limit("invoice", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(require_channel_member),
    db: AsyncSession = Depends(get_db),
):
    """Create a Telegram Stars payment link for a credit pack."""
    pack = get_credit_pack(request.pack_id)
    if pack is None:
        raise PackNotFound(f"Unknown pack: {request.pack_id}")

    await get_or_create_user(db, auth.identity)
    url = await create_pack_invoice_link(pack, auth.user_id)
    return {"url": url, "pack": pack.to_dict()}


@router.post("/generate")
async def generate(
    request: GenerateRequest,
    _rate_limit: None = Depends(rate_limit("generate", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(require_channel_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Generate one image for one credit.

    Completes synchronously with `{ok, url}` when the provider finishes
    before the poll deadline, otherwise returns `{ok, task_id, status}`
    with status IN_PROGRESS.
    """
    prompt = (request.prompt or "").strip()
    if not prompt:
        raise PromptRequired("Prompt is required")
    if len(prompt) > settings.PROMPT_MAX_LENGTH:
        raise PromptTooLong(settings.PROMPT_MAX_LENGTH)
    aspect_ratio = normalize_aspect_ratio(request.aspect_ratio)

    await get_or_create_user(db, auth.identity)
    outcome = await run_generation(db, auth.user_id, prompt, aspect_ratio)
    if outcome.completed:
        return {"ok": True, "url": outcome.url}
    return {"ok": True, "task_id": outcome.task_id, "status": outcome.status}
