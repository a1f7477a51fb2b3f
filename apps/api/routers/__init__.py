"""Routers package."""

from . import (
    health,
    miniapp,
    telegram,
)
