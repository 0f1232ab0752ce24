"""Леджер заявок на вывод: учёт, а не выплата."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal.errors import NotFound, ValidationFailed
from portal.models import IBPartner, WithdrawalRequest, WithdrawalStatus
from portal.repositories import (
    add_withdrawal,
    get_withdrawal,
    list_withdrawals,
    save_withdrawal,
    sum_by_statuses,
)
from portal.utils.numbers import ZERO, to_decimal, to_display, to_text
from .aggregator import CommissionAggregator


class WithdrawalError(ValidationFailed):
    """Заявка на вывод отклонена валидацией."""


@dataclass(slots=True)
class WithdrawalSummary:
    total_earned: Decimal = ZERO
    fixed_earned: Decimal = ZERO
    spread_earned: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_pending: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return max(self.total_earned - self.total_paid - self.total_pending, ZERO)

    def as_dict(self) -> dict:
        return {
            "total_earned": to_display(self.total_earned),
            "fixed_earned": to_display(self.fixed_earned),
            "spread_earned": to_display(self.spread_earned),
            "total_paid": to_display(self.total_paid),
            "total_pending": to_display(self.total_pending),
            "available": to_display(self.available),
        }


def withdrawal_as_dict(withdrawal: WithdrawalRequest) -> dict:
    return {
        "id": withdrawal.id,
        "amount": to_display(withdrawal.amount),
        "method": withdrawal.method,
        "account_details": withdrawal.account_details,
        "status": withdrawal.status,
        "created_at": withdrawal.created_at.isoformat() if withdrawal.created_at else None,
    }


class WithdrawalLedger:
    """Заявки на вывод, неттинг против заработанной комиссии."""

    def __init__(self, aggregator: CommissionAggregator) -> None:
        cfg = get_settings().withdrawals
        self._aggregator = aggregator
        self._allow_full = cfg.allow_full_available
        self._default_period = cfg.default_period_days
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    def set_session_maker(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    def _require_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("WithdrawalLedger: session_maker не задан")
        return self._session_maker

    async def get_summary(
        self, partner: IBPartner, period_days: int | None = None, *, use_cache: bool = True
    ) -> WithdrawalSummary:
        earned = await self._aggregator.earned_summary(
            partner, period_days or self._default_period, use_cache=use_cache
        )
        async with self._require_session_maker()() as session:
            paid = await sum_by_statuses(session, partner.id, WithdrawalStatus.SETTLED)  # type: ignore[arg-type]
            pending = await sum_by_statuses(session, partner.id, (WithdrawalStatus.PENDING,))  # type: ignore[arg-type]
        return WithdrawalSummary(
            total_earned=earned.total,
            fixed_earned=earned.fixed,
            spread_earned=earned.spread,
            total_paid=paid,
            total_pending=pending,
        )

    async def create(
        self,
        partner: IBPartner,
        amount: Any,
        method: str,
        account_details: dict | None = None,
    ) -> WithdrawalRequest:
        value = to_decimal(amount)
        if value <= ZERO:
            raise WithdrawalError("Сумма вывода должна быть больше нуля", code="invalid_amount")
        method = to_text(method)
        if not method:
            raise WithdrawalError("Не указан способ вывода", code="method_required")

        # две параллельные заявки не должны вместе превысить доступный баланс
        async with self._locks[partner.id]:  # type: ignore[index]
            summary = await self.get_summary(partner, use_cache=False)
            available = summary.available
            exceeds = value > available if self._allow_full else value >= available
            if exceeds:
                raise WithdrawalError(
                    f"Недостаточно средств: доступно {to_display(available):.2f}",
                    code="insufficient_balance",
                )
            async with self._require_session_maker()() as session:
                withdrawal = await add_withdrawal(
                    session,
                    WithdrawalRequest(
                        ib_request_id=partner.id,  # type: ignore[arg-type]
                        amount=value,
                        method=method,
                        account_details=account_details or {},
                        status=WithdrawalStatus.PENDING,
                    ),
                )
        logger.info(
            "Заявка на вывод {id}: партнёр {partner}, {amount} через {method}",
            id=withdrawal.id,
            partner=partner.id,
            amount=value,
            method=method,
        )
        return withdrawal

    async def list(self, partner: IBPartner, limit: int = 50) -> list[WithdrawalRequest]:
        async with self._require_session_maker()() as session:
            return list(await list_withdrawals(session, partner.id, limit=limit))  # type: ignore[arg-type]

    async def list_by_status(
        self, partner: IBPartner, status: str, limit: int = 100
    ) -> list[WithdrawalRequest]:
        status = to_text(status).lower()
        if status not in WithdrawalStatus.ALL:
            raise WithdrawalError(f"Неизвестный статус вывода: {status}", code="invalid_status")
        async with self._require_session_maker()() as session:
            return list(
                await list_withdrawals(session, partner.id, status=status, limit=limit)  # type: ignore[arg-type]
            )

    async def set_status(self, withdrawal_id: int, status: str) -> WithdrawalRequest:
        """Админская отметка статуса (выплата не выполняется)."""

        status = to_text(status).lower()
        if status not in WithdrawalStatus.ALL:
            raise WithdrawalError(f"Неизвестный статус вывода: {status}", code="invalid_status")
        async with self._require_session_maker()() as session:
            withdrawal = await get_withdrawal(session, withdrawal_id)
            if withdrawal is None:
                raise NotFound("Заявка на вывод не найдена")
            withdrawal.status = status
            withdrawal = await save_withdrawal(session, withdrawal)
        logger.info("Заявка на вывод {id} -> {status}", id=withdrawal_id, status=status)
        return withdrawal


__all__ = ["WithdrawalError", "WithdrawalLedger", "WithdrawalSummary", "withdrawal_as_dict"]
