"""Freepik Mystic task client: submit and poll text-to-image tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from services.errors import InvalidAspectRatio, ProviderError


TASK_CREATED = "CREATED"
TASK_IN_PROGRESS = "IN_PROGRESS"
TASK_COMPLETED = "COMPLETED"
TASK_FAILED = "FAILED"
TERMINAL_TASK_STATUSES = (TASK_COMPLETED, TASK_FAILED)

DEFAULT_ASPECT_RATIO = "square_1_1"
ASPECT_RATIOS = (
    "square_1_1",
    "classic_4_3",
    "traditional_3_4",
    "widescreen_16_9",
    "social_story_9_16",
    "smartphone_horizontal_20_9",
    "smartphone_vertical_9_20",
    "standard_3_2",
    "portrait_2_3",
    "horizontal_2_1",
    "vertical_1_2",
    "social_5_4",
    "social_post_4_5",
)


def _ratio_alias(value: str) -> str:
    width, height = value.rsplit("_", 2)[1:]
    return f"{width}:{height}"


ASPECT_RATIO_ALIASES = {_ratio_alias(value): value for value in ASPECT_RATIOS}


@dataclass
class MysticTask:
    task_id: str
    status: str
    generated: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


def normalize_aspect_ratio(value: Optional[str]) -> str:
    """Map user input (`square_1_1`, `1:1`, empty) onto Mystic's vocabulary."""
    text = str(value or "").strip()
    if not text:
        return DEFAULT_ASPECT_RATIO
    if text in ASPECT_RATIOS:
        return text
    alias = ASPECT_RATIO_ALIASES.get(text.replace(" ", ""))
    if alias:
        return alias
    raise InvalidAspectRatio(list(ASPECT_RATIOS))


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _mystic_url(task_id: Optional[str] = None) -> str:
    base = f"{settings.FREEPIK_API_BASE.rstrip('/')}/v1/ai/mystic"
    return f"{base}/{task_id}" if task_id else base


def _headers(api_key: str) -> Dict[str, str]:
    return {
        "x-freepik-api-key": api_key,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def _parse_task(response: httpx.Response, action: str) -> MysticTask:
    if not response.is_success:
        raise ProviderError(f"Freepik {action} failed: HTTP {response.status_code} {response.text[:300]}")
    try:
        body: Any = response.json()
    except ValueError as exc:
        raise ProviderError(f"Freepik {action} returned a non-JSON body") from exc

    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        raise ProviderError(f"Freepik {action} response has no data object")

    task_id = str(data.get("task_id") or "").strip()
    if not task_id:
        raise ProviderError(f"Freepik {action} response has no task_id")

    generated = [str(url) for url in (data.get("generated") or []) if url]
    return MysticTask(
        task_id=task_id,
        status=str(data.get("status") or TASK_IN_PROGRESS).upper(),
        generated=generated,
    )


async def create_mystic_task(api_key: str, prompt: str, aspect_ratio: str) -> MysticTask:
    """Submit a Mystic generation task."""
    payload: Dict[str, Any] = {"prompt": prompt, "aspect_ratio": aspect_ratio}
    if settings.FREEPIK_MYSTIC_MODEL:
        payload["model"] = settings.FREEPIK_MYSTIC_MODEL
    if settings.FREEPIK_MYSTIC_RESOLUTION:
        payload["resolution"] = settings.FREEPIK_MYSTIC_RESOLUTION

    async with _http_client(settings.PROVIDER_TIMEOUT_SECONDS) as client:
        response = await client.post(_mystic_url(), json=payload, headers=_headers(api_key))
    return _parse_task(response, "create")


async def get_mystic_task(api_key: str, task_id: str) -> MysticTask:
    """Fetch the current status of a Mystic task."""
    async with _http_client(settings.PROVIDER_TIMEOUT_SECONDS) as client:
        response = await client.get(_mystic_url(task_id), headers=_headers(api_key))
    return _parse_task(response, "status")
