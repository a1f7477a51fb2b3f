import json
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base, get_db
from main import app
from services.credits import record_generation_start
from services.prompts import seed_prompt_suggestions
from services.telegram_auth import sign_init_data


APP_USER_ID = 900300


def _auth_header(user_id: int = APP_USER_ID, **extra) -> dict:
    fields = {
        "auth_date": int(time.time()),
        "user": {"id": user_id, "first_name": "Mini", "username": "mini_user"},
    }
    fields.update(extra)
    return {"X-Telegram-InitData": sign_init_data(fields, settings.BOT_TOKEN)}


def _bot_client_factory(handler):
    def _factory(timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout)

    return _factory


@pytest_asyncio.fixture
async def app_client(tmp_path):
    db_path = tmp_path / "miniapp.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    with (
        patch("services.membership.settings.REQUIRE_SUBSCRIPTION", False),
        patch("services.credits.settings.BONUS_CREDITS", 3),
    ):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client, session_maker

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.mark.asyncio
async def test_missing_init_data_header_is_unauthorized(app_client):
    client, _ = app_client
    response = await client.get("/api/me")
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "reason": "missing_init_data"}


@pytest.mark.asyncio
async def test_forged_init_data_is_unauthorized(app_client):
    client, _ = app_client
    forged = sign_init_data({"auth_date": int(time.time()), "user": {"id": APP_USER_ID}}, "1:NOT-THE-BOT")
    response = await client.get("/api/history", headers={"X-Telegram-InitData": forged})
    assert response.status_code == 401
    assert response.json()["reason"] == "hash_mismatch"


@pytest.mark.asyncio
async def test_me_creates_user_with_bonus_and_deep_link(app_client):
    client, _ = app_client
    with patch("config.settings.BOT_USERNAME", "@mystic_bot"):
        response = await client.get("/api/me", headers=_auth_header(start_param="ref_42"))

    assert response.status_code == 200
    payload = response.json()
    assert payload["user"]["id"] == APP_USER_ID
    assert payload["user"]["credits"] == 3
    assert payload["user"]["username"] == "mini_user"
    assert payload["user"]["referred_by"] == 42
    assert payload["deepLink"] == f"https://t.me/mystic_bot?start=ref_{APP_USER_ID}"
    assert {pack["id"] for pack in payload["packs"]} == {"pack_10", "pack_30", "pack_100"}

    again = await client.get("/api/me", headers=_auth_header())
    assert again.json()["user"]["credits"] == 3


@pytest.mark.asyncio
async def test_me_without_bot_username_has_no_deep_link(app_client):
    client, _ = app_client
    with patch("config.settings.BOT_USERNAME", ""):
        response = await client.get("/api/me", headers=_auth_header())
    assert response.json()["deepLink"] is None


@pytest.mark.asyncio
async def test_prompts_and_history_listings(app_client):
    client, session_maker = app_client
    await client.get("/api/me", headers=_auth_header())
    async with session_maker() as session:
        await seed_prompt_suggestions(session)
        await record_generation_start(
            session,
            APP_USER_ID,
            prompt="a misty forest",
            aspect_ratio="square_1_1",
            task_id="task-hist",
        )

    prompts = await client.get("/api/prompts", headers=_auth_header())
    assert prompts.status_code == 200
    assert len(prompts.json()["items"]) > 0
    assert {"id", "title", "prompt", "aspect_ratio"} <= set(prompts.json()["items"][0])

    history = await client.get("/api/history", headers=_auth_header())
    assert history.status_code == 200
    items = history.json()["items"]
    assert [item["task_id"] for item in items] == ["task-hist"]
    assert items[0]["status"] == "IN_PROGRESS"
    assert items[0]["result_url"] is None


@pytest.mark.asyncio
async def test_gate_denies_non_subscriber(app_client):
    client, _ = app_client

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "result": {"status": "left"}})

    with (
        patch("services.membership.settings.REQUIRE_SUBSCRIPTION", True),
        patch("services.membership.settings.CHANNEL_USERNAME", "@mystic_channel"),
        patch("services.telegram_bot._http_client", _bot_client_factory(handler)),
    ):
        response = await client.get("/api/prompts", headers=_auth_header())

    assert response.status_code == 403
    assert response.json() == {"error": "not_subscribed", "channel": "@mystic_channel"}


@pytest.mark.asyncio
async def test_gate_fails_open_when_lookup_errors(app_client):
    client, _ = app_client

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway")

    with (
        patch("services.membership.settings.REQUIRE_SUBSCRIPTION", True),
        patch("services.membership.settings.CHANNEL_USERNAME", "@mystic_channel"),
        patch("services.telegram_bot._http_client", _bot_client_factory(handler)),
    ):
        response = await client.get("/api/prompts", headers=_auth_header())

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_disabled_gate_lets_non_subscriber_through(app_client):
    client, _ = app_client
    lookup = AsyncMock(return_value={"status": "left"})
    with (
        patch("services.membership.settings.REQUIRE_SUBSCRIPTION", False),
        patch("services.membership.call_bot_api", lookup),
    ):
        response = await client.get("/api/history", headers=_auth_header())

    assert response.status_code == 200
    lookup.assert_not_awaited()


@pytest.mark.asyncio
async def test_invoice_for_unknown_pack_is_rejected(app_client):
    client, _ = app_client
    response = await client.post("/api/invoice", json={"pack_id": "pack_9000"}, headers=_auth_header())
    assert response.status_code == 400
    assert response.json()["error"] == "unknown_pack"


@pytest.mark.asyncio
async def test_invoice_returns_stars_link(app_client):
    client, _ = app_client
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "result": "https://t.me/$invoice-link"})

    with patch("services.telegram_bot._http_client", _bot_client_factory(handler)):
        response = await client.post("/api/invoice", json={"pack_id": "pack_30"}, headers=_auth_header())

    assert response.status_code == 200
    payload = response.json()
    assert payload["url"] == "https://t.me/$invoice-link"
    assert payload["pack"]["id"] == "pack_30"
    assert payload["pack"]["credits"] == 30
    assert captured["path"].endswith("/createInvoiceLink")
    assert captured["body"]["currency"] == "XTR"
    assert captured["body"]["payload"] == f"pack:pack_30:{APP_USER_ID}"
    assert captured["body"]["prices"] == [{"label": payload["pack"]["title"], "amount": payload["pack"]["price"]}]


@pytest.mark.asyncio
async def test_invoice_bot_api_failure_maps_to_500(app_client):
    client, _ = app_client

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"ok": False, "description": "Bad Request: currency is invalid"})

    with patch("services.telegram_bot._http_client", _bot_client_factory(handler)):
        response = await client.post("/api/invoice", json={"pack_id": "pack_10"}, headers=_auth_header())

    assert response.status_code == 500
    assert response.json()["error"] == "invoice_failed"


@pytest.mark.asyncio
async def test_health_liveness_and_root(app_client):
    client, _ = app_client
    live = await client.get("/health/live")
    assert live.json() == {"alive": True}
    root = await client.get("/")
    assert root.json()["status"] == "running"
