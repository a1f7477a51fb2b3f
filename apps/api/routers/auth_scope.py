"""Authentication dependencies for mini app routes."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from config import require_bot_token, settings
from services.errors import Forbidden
from services.membership import is_channel_member
from services.telegram_auth import TelegramIdentity, verify_init_data


INIT_DATA_HEADER = "X-Telegram-InitData"


@dataclass
class AuthContext:
    identity: TelegramIdentity

    @property
    def user_id(self) -> int:
        return self.identity.user_id


async def get_auth_context(
    init_data: Optional[str] = Header(default=None, alias=INIT_DATA_HEADER),
) -> AuthContext:
    """Resolve the Telegram user from signed init data."""
    identity = verify_init_data(
        init_data,
        require_bot_token(),
        max_age_seconds=int(settings.INIT_DATA_MAX_AGE_SECONDS),
    )
    return AuthContext(identity=identity)


async def require_channel_member(
    auth: AuthContext = Depends(get_auth_context),
) -> AuthContext:
    """Authenticated user who also passes the channel subscription gate."""
    if not await is_channel_member(auth.user_id):
        raise Forbidden(settings.CHANNEL_USERNAME.strip())
    return auth
