"""Хранилище одобренных правил комиссии партнёров."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.errors import ValidationFailed
from portal.models import GroupAssignment, IBPartner
from portal.repositories import (
    clear_assignments,
    get_structure,
    list_assignments,
    replace_assignments,
)
from portal.utils.numbers import HUNDRED, ZERO, to_decimal, to_optional_decimal, to_text
from .group_keys import CommissionRule, RuleMap


class CommissionRuleError(ValidationFailed):
    """Некорректные условия комиссии при одобрении."""


@dataclass(slots=True)
class RuleInput:
    """Условия для одной группы из админского запроса."""

    group_id: str
    group_name: str | None = None
    structure_id: int | None = None
    structure_name: str | None = None
    usd_per_lot: Decimal | None = None
    spread_share_percentage: Decimal | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RuleInput":
        structure_id = payload.get("structure_id", payload.get("structureId"))
        return cls(
            group_id=to_text(payload.get("group_id", payload.get("groupId"))),
            group_name=to_text(payload.get("group_name", payload.get("groupName"))) or None,
            structure_id=int(structure_id) if structure_id not in (None, "") else None,
            structure_name=to_text(payload.get("structure_name", payload.get("structureName")))
            or None,
            usd_per_lot=to_optional_decimal(payload.get("usd_per_lot", payload.get("usdPerLot"))),
            spread_share_percentage=to_optional_decimal(
                payload.get("spread_share_percentage", payload.get("spreadSharePercentage"))
            ),
        )


def validate_rule(rule: RuleInput) -> None:
    if not rule.group_id:
        raise CommissionRuleError("Для каждой группы нужен group_id", code="group_required")
    if rule.usd_per_lot is not None and rule.usd_per_lot < ZERO:
        raise CommissionRuleError(
            f"USD за лот для группы {rule.group_id} не может быть отрицательным",
            code="invalid_usd_per_lot",
        )
    pct = rule.spread_share_percentage
    if pct is not None and not (ZERO <= pct <= HUNDRED):
        raise CommissionRuleError(
            f"Доля спреда для группы {rule.group_id} должна быть от 0 до 100",
            code="invalid_spread_share",
        )


class CommissionRuleStore:
    """Читает и атомарно заменяет правила партнёра, строит RuleMap."""

    async def load(self, session: AsyncSession, partner: IBPartner) -> RuleMap:
        """Карта правил партнёра.

        Нет групповых назначений - единственное правило ``*`` из legacy-ставок
        партнёра (если они заданы). Пустая ставка назначения берётся из
        привязанной структуры.
        """

        rows = await list_assignments(session, partner.id)  # type: ignore[arg-type]
        rules = []
        for assignment, structure in rows:
            usd = assignment.usd_per_lot
            pct = assignment.spread_share_percentage
            if structure is not None:
                usd = usd if usd is not None else structure.usd_per_lot
                pct = pct if pct is not None else structure.spread_share_percentage
            rules.append(
                CommissionRule(
                    group_id=assignment.group_id,
                    group_name=assignment.group_name,
                    structure_name=assignment.structure_name,
                    usd_per_lot=to_decimal(usd),
                    spread_share_percentage=to_decimal(pct),
                )
            )
        if rules:
            return RuleMap(rules)
        if partner.usd_per_lot is not None or partner.spread_percentage_per_lot is not None:
            return RuleMap.wildcard(
                to_decimal(partner.usd_per_lot), to_decimal(partner.spread_percentage_per_lot)
            )
        return RuleMap()

    async def replace(
        self,
        session: AsyncSession,
        partner_id: int,
        rules: Iterable[RuleInput],
        *,
        commit: bool = True,
    ) -> list[GroupAssignment]:
        """Валидирует все правила и только потом заменяет набор целиком."""

        rules = list(rules)
        for rule in rules:
            validate_rule(rule)
        assignments = []
        for rule in rules:
            structure_name = rule.structure_name
            if rule.structure_id is not None and structure_name is None:
                structure = await get_structure(session, rule.structure_id)
                if structure is None:
                    raise CommissionRuleError(
                        f"Структура комиссии {rule.structure_id} не найдена",
                        code="structure_not_found",
                    )
                structure_name = structure.structure_name
            assignments.append(
                GroupAssignment(
                    ib_request_id=partner_id,
                    group_id=rule.group_id,
                    group_name=rule.group_name or rule.group_id,
                    structure_id=rule.structure_id,
                    structure_name=structure_name,
                    usd_per_lot=rule.usd_per_lot,
                    spread_share_percentage=rule.spread_share_percentage,
                )
            )
        saved = await replace_assignments(session, partner_id, assignments, commit=commit)
        logger.info(
            "Правила комиссии партнёра {partner} заменены: {count} групп",
            partner=partner_id,
            count=len(saved),
        )
        return saved

    async def clear(self, session: AsyncSession, partner_id: int, *, commit: bool = True) -> None:
        await clear_assignments(session, partner_id, commit=commit)
        logger.info("Правила комиссии партнёра {partner} очищены", partner=partner_id)


__all__ = ["CommissionRuleError", "CommissionRuleStore", "RuleInput", "validate_rule"]
