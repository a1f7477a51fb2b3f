"""Static catalog of purchasable credit packs."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple


PACK_CURRENCY = "XTR"


@dataclass(frozen=True)
class CreditPack:
    id: str
    title: str
    credits: int
    price: int
    description: str

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["currency"] = PACK_CURRENCY
        return payload


CREDIT_PACKS: Tuple[CreditPack, ...] = (
    CreditPack(
        id="pack_10",
        title="10 generations",
        credits=10,
        price=100,
        description="10 Mystic image generations",
    ),
    CreditPack(
        id="pack_30",
        title="30 generations",
        credits=30,
        price=250,
        description="30 Mystic image generations",
    ),
    CreditPack(
        id="pack_100",
        title="100 generations",
        credits=100,
        price=700,
        description="100 Mystic image generations",
    ),
)


def get_credit_pack(pack_id: Optional[str]) -> Optional[CreditPack]:
    wanted = str(pack_id or "").strip()
    for pack in CREDIT_PACKS:
        if pack.id == wanted:
            return pack
    return None
