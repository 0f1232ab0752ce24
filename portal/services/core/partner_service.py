"""Жизненный цикл IB-партнёра: заявка, вход, смена статуса."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Sequence

from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.errors import AccessDenied, AuthenticationFailed, Conflict, NotFound, ValidationFailed
from portal.models import DEFAULT_IB_TYPE, IB_TYPES, IBPartner, PartnerStatus
from portal.repositories import (
    get_partner,
    get_partner_by_email,
    get_partner_by_referral_code,
    list_partners,
    save_partner,
)
from portal.services.commission.rule_store import CommissionRuleStore, RuleInput
from portal.utils.security import hash_password, verify_password
from .referral_service import ReferralService, normalize_code

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_LOGIN_REFUSALS = {
    PartnerStatus.PENDING: "Заявка IB ещё на рассмотрении",
    PartnerStatus.REJECTED: "Заявка IB отклонена, подайте её повторно",
    PartnerStatus.BANNED: "Учётная запись IB заблокирована",
}


class PartnerError(ValidationFailed):
    """Ошибка валидации заявки партнёра."""


def normalize_ib_type(value: str | None) -> str:
    ib_type = (value or "").strip().lower()
    return ib_type if ib_type in IB_TYPES else DEFAULT_IB_TYPE


def _validate_application(full_name: str, email: str, password: str) -> None:
    if not (2 <= len(full_name) <= 100):
        raise PartnerError("Имя должно быть от 2 до 100 символов", code="invalid_name")
    if not _EMAIL_RE.match(email):
        raise PartnerError("Некорректный email", code="invalid_email")
    if not (6 <= len(password) <= 100) or any(ch.isspace() for ch in password):
        raise PartnerError(
            "Пароль от 6 до 100 символов без пробелов", code="invalid_password"
        )


class PartnerService:
    """Заявки IB и админские переходы статусов."""

    def __init__(self, rule_store: CommissionRuleStore, referrals: ReferralService) -> None:
        self._rules = rule_store
        self._referrals = referrals

    async def apply(
        self,
        session: AsyncSession,
        *,
        full_name: str,
        email: str,
        password: str,
        ib_type: str | None = None,
        referral_code: str | None = None,
    ) -> IBPartner:
        """Новая заявка или повторная подача после отказа."""

        full_name = (full_name or "").strip()
        email = (email or "").strip().lower()
        password = password or ""
        _validate_application(full_name, email, password)

        referrer = None
        if referral_code and normalize_code(referral_code):
            code = self._referrals.validate_code(referral_code)
            referrer = await get_partner_by_referral_code(session, code)
            if referrer is None or not referrer.is_approved:
                raise PartnerError("Реферальный код не найден", code="code_not_found")

        partner = await get_partner_by_email(session, email)
        if partner is not None:
            status = (partner.status or "").strip().lower()
            if status != PartnerStatus.REJECTED:
                raise Conflict(
                    f"Заявка с этим email уже существует (статус: {status})",
                    code="already_applied",
                )
            partner.status = PartnerStatus.PENDING
            partner.submitted_at = datetime.now(timezone.utc)
            partner.admin_comments = None
        else:
            partner = IBPartner(full_name=full_name, email=email, password_hash="")

        partner.full_name = full_name
        partner.password_hash = hash_password(password)
        partner.ib_type = normalize_ib_type(ib_type)
        if referrer is not None and referrer.id != partner.id:
            partner.referred_by = referrer.id
        partner = await save_partner(session, partner)
        logger.info("Заявка IB {id} ({email}) принята в статусе pending", id=partner.id, email=email)
        return partner

    async def authenticate(self, session: AsyncSession, email: str, password: str) -> IBPartner:
        partner = await get_partner_by_email(session, email or "")
        if partner is None or not verify_password(password, partner.password_hash):
            raise AuthenticationFailed("Неверный email или пароль", code="invalid_credentials")
        status = (partner.status or "").strip().lower()
        if status != PartnerStatus.APPROVED:
            raise AccessDenied(
                _LOGIN_REFUSALS.get(status, "Доступ запрещён"), code=f"status_{status}"
            )
        return partner

    async def get_approved(self, session: AsyncSession, partner_id: int) -> IBPartner:
        partner = await get_partner(session, partner_id)
        if partner is None:
            raise AuthenticationFailed("Партнёр не найден", code="unknown_partner")
        if not partner.is_approved:
            raise AccessDenied("Учётная запись IB не активна", code=f"status_{partner.status}")
        return partner

    async def list_partners(
        self,
        session: AsyncSession,
        *,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[IBPartner]:
        return await list_partners(session, status=status, limit=limit, offset=offset)

    async def set_status(
        self,
        session: AsyncSession,
        partner_id: int,
        status: str,
        *,
        rules: Sequence[RuleInput] = (),
        admin_comments: str | None = None,
        ib_type: str | None = None,
    ) -> IBPartner:
        """Админский переход статуса.

        Одобрение атомарно заменяет групповые назначения (нужно хотя бы одно)
        и копирует ставки первой группы в legacy-поля. Отказ и бан очищают
        назначения.
        """

        status = (status or "").strip().lower()
        if status not in PartnerStatus.ALL:
            raise ValidationFailed(f"Неизвестный статус: {status}", code="invalid_status")
        partner = await get_partner(session, partner_id)
        if partner is None:
            raise NotFound("Заявка IB не найдена")

        if status == PartnerStatus.APPROVED:
            if not rules:
                raise ValidationFailed(
                    "Для одобрения нужна хотя бы одна группа", code="groups_required"
                )
            await self._rules.replace(session, partner_id, rules, commit=False)
            first = rules[0]
            partner.usd_per_lot = first.usd_per_lot
            partner.spread_percentage_per_lot = first.spread_share_percentage
            partner.approved_at = datetime.now(timezone.utc)
            await self._referrals.ensure_code(session, partner)
        elif status in (PartnerStatus.REJECTED, PartnerStatus.BANNED):
            await self._rules.clear(session, partner_id, commit=False)

        partner.status = status
        if admin_comments is not None:
            partner.admin_comments = admin_comments
        if ib_type:
            partner.ib_type = normalize_ib_type(ib_type)
        # save_partner коммитит назначения и партнёра одной транзакцией
        partner = await save_partner(session, partner)
        logger.info("Статус IB {id} -> {status}", id=partner_id, status=status)
        return partner


__all__ = ["PartnerError", "PartnerService", "normalize_ib_type"]
