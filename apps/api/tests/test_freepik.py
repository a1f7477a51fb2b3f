import json
from unittest.mock import patch

import httpx
import pytest

from services.errors import InvalidAspectRatio, ProviderError
from services.freepik import (
    DEFAULT_ASPECT_RATIO,
    create_mystic_task,
    get_mystic_task,
    normalize_aspect_ratio,
)


def _client_factory(handler):
    def _factory(timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout)

    return _factory


@pytest.mark.asyncio
async def test_create_task_posts_prompt_and_returns_task_id():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["api_key"] = request.headers.get("x-freepik-api-key")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"task_id": "t-123", "status": "CREATED", "generated": []}})

    with (
        patch("services.freepik._http_client", _client_factory(handler)),
        patch("services.freepik.settings.FREEPIK_MYSTIC_MODEL", "realism"),
        patch("services.freepik.settings.FREEPIK_MYSTIC_RESOLUTION", ""),
    ):
        task = await create_mystic_task("key-1", "a red fox", "widescreen_16_9")

    assert task.task_id == "t-123"
    assert task.status == "CREATED"
    assert task.is_terminal is False
    assert captured == {
        "method": "POST",
        "path": "/v1/ai/mystic",
        "api_key": "key-1",
        "body": {"prompt": "a red fox", "aspect_ratio": "widescreen_16_9", "model": "realism"},
    }


@pytest.mark.asyncio
async def test_create_task_non_success_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Invalid API key"})

    with patch("services.freepik._http_client", _client_factory(handler)):
        with pytest.raises(ProviderError) as exc_info:
            await create_mystic_task("bad-key", "a red fox", "square_1_1")
    assert "401" in exc_info.value.message


@pytest.mark.asyncio
async def test_create_task_without_task_id_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"status": "CREATED"}})

    with patch("services.freepik._http_client", _client_factory(handler)):
        with pytest.raises(ProviderError):
            await create_mystic_task("key-1", "a red fox", "square_1_1")


@pytest.mark.asyncio
async def test_poll_returns_status_and_generated_urls():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v1/ai/mystic/t-123"
        return httpx.Response(
            200,
            json={"data": {"task_id": "t-123", "status": "COMPLETED", "generated": ["https://img/1.png"]}},
        )

    with patch("services.freepik._http_client", _client_factory(handler)):
        task = await get_mystic_task("key-1", "t-123")

    assert task.status == "COMPLETED"
    assert task.generated == ["https://img/1.png"]
    assert task.is_terminal is True


@pytest.mark.asyncio
async def test_poll_non_json_body_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with patch("services.freepik._http_client", _client_factory(handler)):
        with pytest.raises(ProviderError):
            await get_mystic_task("key-1", "t-123")


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, DEFAULT_ASPECT_RATIO),
        ("", DEFAULT_ASPECT_RATIO),
        ("square_1_1", "square_1_1"),
        ("16:9", "widescreen_16_9"),
        ("9:16", "social_story_9_16"),
        ("4:5", "social_post_4_5"),
    ],
)
def test_normalize_aspect_ratio(value, expected):
    assert normalize_aspect_ratio(value) == expected


def test_unknown_aspect_ratio_is_rejected():
    with pytest.raises(InvalidAspectRatio) as exc_info:
        normalize_aspect_ratio("7:3")
    assert "square_1_1" in exc_info.value.extra["allowed"]
