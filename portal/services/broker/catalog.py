"""Каталог групп MT5 и именованные структуры комиссий."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.errors import Conflict, NotFound, ValidationFailed
from portal.models import BrokerGroup, CommissionStructure
from portal.repositories import (
    delete_structure,
    find_structure,
    get_structure,
    list_groups,
    list_structures,
    replace_groups,
    save_structure,
)
from portal.services.commission.group_keys import BBOOK_SEGMENT, is_demo, normalize_group
from portal.services.commission.rule_store import RuleInput, validate_rule
from portal.utils.numbers import to_decimal
from .mt5_client import MT5Client

_KNOWN_TIERS = {
    "std": "Standard",
    "standard": "Standard",
    "pro": "Pro",
    "ecn": "ECN",
    "vip": "VIP",
    "raw": "Raw Spread",
    "cent": "Cent",
    "islamic": "Islamic",
    "swapfree": "Swap Free",
}


def generate_group_name(group_id: str, index: int = 0) -> str:
    """Читаемое имя группы из пути MT5 (``real\\Bbook\\Pro\\USD`` -> ``Pro USD``)."""

    text = normalize_group(group_id).replace("\\", "/")
    segments = [part.strip() for part in text.split("/") if part.strip()]
    if not segments:
        return f"Group {index + 1}"
    if BBOOK_SEGMENT in segments:
        segments = segments[segments.index(BBOOK_SEGMENT) + 1 :]
    elif len(segments) > 1 and segments[0] in {"real", "live", "demo"}:
        segments = segments[1:]
    words = [_KNOWN_TIERS.get(part, part.upper() if len(part) <= 3 else part.title()) for part in segments]
    name = " ".join(words) or f"Group {index + 1}"
    if is_demo(group_id) and "demo" not in name.lower():
        name = f"Demo {name}"
    return name


class GroupCatalog:
    """Список групп брокера и шаблоны ставок для одобрения."""

    def __init__(self, client: MT5Client) -> None:
        self._client = client

    async def sync_from_broker(self, session: AsyncSession) -> int:
        """Полностью заменяет mt5_groups списком из /api/Groups."""

        names = await self._client.get_groups()
        now = datetime.now(timezone.utc)
        unique = list(dict.fromkeys(names))
        count = await replace_groups(
            session,
            (
                BrokerGroup(group_id=group_id, name=generate_group_name(group_id, index), synced_at=now)
                for index, group_id in enumerate(unique)
            ),
        )
        logger.info("Каталог групп MT5 обновлён: {count}", count=count)
        return count

    async def list_groups(self, session: AsyncSession) -> Sequence[BrokerGroup]:
        return await list_groups(session)

    async def list_structures(
        self, session: AsyncSession, group_id: str | None = None
    ) -> Sequence[CommissionStructure]:
        return await list_structures(session, group_id=group_id)

    async def create_structure(
        self,
        session: AsyncSession,
        *,
        group_id: str,
        structure_name: str,
        usd_per_lot: Any,
        spread_share_percentage: Any,
        is_active: bool = True,
    ) -> CommissionStructure:
        rule = RuleInput(
            group_id=(group_id or "").strip(),
            usd_per_lot=to_decimal(usd_per_lot),
            spread_share_percentage=to_decimal(spread_share_percentage),
        )
        validate_rule(rule)
        structure_name = (structure_name or "").strip()
        if not structure_name:
            raise ValidationFailed("Название структуры обязательно", code="name_required")
        if await find_structure(session, rule.group_id, structure_name) is not None:
            raise Conflict("Структура с таким названием уже есть для группы", code="structure_exists")
        return await save_structure(
            session,
            CommissionStructure(
                group_id=rule.group_id,
                structure_name=structure_name,
                usd_per_lot=rule.usd_per_lot,
                spread_share_percentage=rule.spread_share_percentage,
                is_active=is_active,
            ),
        )

    async def delete_structure(self, session: AsyncSession, structure_id: int) -> None:
        structure = await get_structure(session, structure_id)
        if structure is None:
            raise NotFound("Структура комиссии не найдена")
        await delete_structure(session, structure)


__all__ = ["GroupCatalog", "generate_group_name"]
