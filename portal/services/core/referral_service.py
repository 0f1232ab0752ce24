"""Реферальная система партнёров: коды, привязка клиентов, даунлайн."""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal.errors import Conflict, NotFound, ValidationFailed
from portal.models import ClientUser, IBPartner, IBReferral
from portal.repositories import (
    add_referral,
    get_partner,
    get_partner_by_referral_code,
    get_referral,
    get_user_by_email,
    list_accounts_for_users,
    list_children,
    list_referrals,
    list_user_ids_by_emails,
    list_users,
    save_partner,
    volume_by_partner,
)
from portal.services.core.accounts import is_live_account
from portal.utils.numbers import ZERO, to_decimal

_CODE_RE = re.compile(r"^[A-Z0-9]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ReferralCodeError(ValidationFailed):
    """Код не прошёл валидацию формата."""


@dataclass(slots=True)
class ReferralTreeNode:
    """Узел дерева IB с собственным и командным объёмом."""

    partner_id: int
    full_name: str
    email: str
    status: str
    ib_type: str
    own_lots: Decimal = ZERO
    trade_count: int = 0
    team_lots: Decimal = ZERO
    children: list["ReferralTreeNode"] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "id": self.partner_id,
            "name": self.full_name,
            "email": self.email,
            "status": self.status,
            "ib_type": self.ib_type,
            "own_lots": float(self.own_lots),
            "trade_count": self.trade_count,
            "team_lots": float(self.team_lots),
            "children": [child.as_dict() for child in self.children],
        }


class ClientKind(str):
    IB = "ib"
    TRADER = "trader"


@dataclass(slots=True)
class ReferredClient:
    """Прямой реферал партнёра: суб-IB из заявок или трейдер из CRM."""

    kind: str
    ref_id: int
    email: str
    name: str | None
    user_id: str | None
    status: str
    ib_type: str
    referral_code: str | None
    joined_at: datetime | None
    approved_at: datetime | None = None
    phone: str | None = None
    account_count: int = 0

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.ref_id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
            "ib_type": self.ib_type,
            "referral_code": self.referral_code,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "account_count": self.account_count,
        }


def normalize_code(raw: str | None) -> str:
    return (raw or "").strip().upper()


def generate_code(length: int = 8) -> str:
    return secrets.token_hex(length // 2 + 1).upper()[:length]


class ReferralService:
    """Реферальная система, работающая через БД."""

    def __init__(self) -> None:
        cfg = get_settings().portal
        self._max_length = cfg.referral_code_max_length
        self._frontend_url = str(cfg.frontend_url).rstrip("/")

    def validate_code(self, raw: str | None) -> str:
        code = normalize_code(raw)
        if not code:
            raise ReferralCodeError("Реферальный код не может быть пустым", code="empty_code")
        if len(code) > self._max_length:
            raise ReferralCodeError(
                f"Реферальный код не длиннее {self._max_length} символов",
                code="code_too_long",
            )
        if not _CODE_RE.match(code):
            raise ReferralCodeError(
                "Реферальный код может содержать только латиницу A-Z и цифры",
                code="invalid_code",
            )
        return code

    async def update_code(self, session: AsyncSession, partner: IBPartner, raw: str) -> IBPartner:
        code = self.validate_code(raw)
        owner = await get_partner_by_referral_code(session, code)
        if owner is not None and owner.id != partner.id:
            raise Conflict("Этот реферальный код уже занят", code="code_taken")
        partner.referral_code = code
        partner = await save_partner(session, partner)
        logger.info("Партнёр {partner} сменил реферальный код на {code}", partner=partner.id, code=code)
        return partner

    async def ensure_code(self, session: AsyncSession, partner: IBPartner) -> str:
        """Выдаёт уникальный код, если его ещё нет. Не коммитит."""

        if partner.referral_code:
            return partner.referral_code
        while True:
            code = generate_code(self._max_length)
            if await get_partner_by_referral_code(session, code) is None:
                partner.referral_code = code
                return code

    async def resolve(self, session: AsyncSession, raw: str) -> IBPartner:
        code = self.validate_code(raw)
        partner = await get_partner_by_referral_code(session, code)
        if partner is None or not partner.is_approved:
            raise NotFound("Реферальный код не найден", code="code_not_found")
        return partner

    async def attach(
        self,
        session: AsyncSession,
        *,
        code: str,
        email: str,
        source: str | None = None,
    ) -> IBReferral:
        """Привязывает клиента к партнёру по коду (повторный вызов идемпотентен)."""

        email = (email or "").strip().lower()
        if not _EMAIL_RE.match(email):
            raise ValidationFailed("Некорректный email", code="invalid_email")
        partner = await self.resolve(session, code)
        if partner.email.strip().lower() == email:
            raise ValidationFailed("Нельзя привязать себя по своему коду", code="self_referral")

        existing = await get_referral(session, partner.id, email)  # type: ignore[arg-type]
        if existing is not None:
            return existing
        user = await get_user_by_email(session, email)
        referral = IBReferral(
            ib_request_id=partner.id,  # type: ignore[arg-type]
            email=email,
            user_id=user.id if user else None,
            referral_code=partner.referral_code or normalize_code(code),
            source=source,
        )
        referral = await add_referral(session, referral)
        logger.info("Новый реферал: {ib} -> {email}", ib=partner.id, email=email)
        return referral

    async def downline_partner_ids(self, session: AsyncSession, root_id: int) -> list[int]:
        """Все партнёры ниже root_id (транзитивно, циклы игнорируются)."""

        seen = {root_id}
        result: list[int] = []
        frontier = [root_id]
        while frontier:
            children = await list_children(session, frontier)
            frontier = []
            for child in children:
                if child.id in seen:
                    continue
                seen.add(child.id)  # type: ignore[arg-type]
                result.append(child.id)  # type: ignore[arg-type]
                frontier.append(child.id)  # type: ignore[arg-type]
        return result

    async def downline_user_ids(
        self, session: AsyncSession, partner: IBPartner, *, own_user_id: str | None = None
    ) -> frozenset[str]:
        """Клиенты CRM даунлайна без собственного пользователя партнёра."""

        downline_ids = await self.downline_partner_ids(session, partner.id)  # type: ignore[arg-type]
        emails = []
        for child_id in downline_ids:
            child = await get_partner(session, child_id)
            if child is not None:
                emails.append(child.email)
        user_ids = set(await list_user_ids_by_emails(session, emails))
        for referral in await list_referrals(session, [partner.id, *downline_ids]):
            if referral.user_id:
                user_ids.add(referral.user_id)
            else:
                emails.append(referral.email)
        user_ids.update(await list_user_ids_by_emails(session, emails))
        if own_user_id is not None:
            user_ids.discard(own_user_id)
        return frozenset(user_ids)

    async def list_clients(self, session: AsyncSession, partner: IBPartner) -> list[ReferredClient]:
        """Прямые рефералы: суб-IB, затем трейдеры CRM без дублей по email."""

        children = sorted(
            await list_children(session, [partner.id]),  # type: ignore[list-item]
            key=lambda child: child.submitted_at,
            reverse=True,
        )
        referrals = await list_referrals(session, [partner.id])  # type: ignore[list-item]
        users = await list_users(
            session,
            user_ids=[r.user_id for r in referrals if r.user_id],
            emails=[child.email for child in children] + [r.email for r in referrals],
        )
        by_id = {user.id: user for user in users}
        by_email = {user.email.strip().lower(): user for user in users}

        clients: list[ReferredClient] = []
        for child in children:
            user = by_email.get(child.email.strip().lower())
            clients.append(
                ReferredClient(
                    kind=ClientKind.IB,
                    ref_id=child.id,  # type: ignore[arg-type]
                    email=child.email,
                    name=child.full_name,
                    user_id=user.id if user else None,
                    status=child.status,
                    ib_type=child.ib_type,
                    referral_code=child.referral_code,
                    joined_at=child.submitted_at,
                    approved_at=child.approved_at,
                    phone=user.phone if user else None,
                )
            )
        seen = {client.email.strip().lower() for client in clients}
        for referral in referrals:
            email = referral.email.strip().lower()
            if email in seen:
                continue
            seen.add(email)
            user = by_id.get(referral.user_id) if referral.user_id else None
            user = user or by_email.get(email)
            clients.append(self._trader(referral, user))

        accounts = await list_accounts_for_users(
            session, [client.user_id for client in clients if client.user_id]
        )
        live: dict[str, int] = {}
        for account in accounts:
            if is_live_account(account):
                live[account.user_id] = live.get(account.user_id, 0) + 1
        for client in clients:
            client.account_count = live.get(client.user_id, 0) if client.user_id else 0
        return clients

    async def list_traders(self, session: AsyncSession, partner: IBPartner) -> list[ReferredClient]:
        """Только трейдеры CRM, привязанные по коду партнёра."""

        referrals = await list_referrals(session, [partner.id])  # type: ignore[list-item]
        users = await list_users(
            session,
            user_ids=[r.user_id for r in referrals if r.user_id],
            emails=[r.email for r in referrals],
        )
        by_id = {user.id: user for user in users}
        by_email = {user.email.strip().lower(): user for user in users}
        return [
            self._trader(
                referral,
                (by_id.get(referral.user_id) if referral.user_id else None)
                or by_email.get(referral.email.strip().lower()),
            )
            for referral in referrals
        ]

    @staticmethod
    def _trader(referral: IBReferral, user: ClientUser | None) -> ReferredClient:
        return ReferredClient(
            kind=ClientKind.TRADER,
            ref_id=referral.id,  # type: ignore[arg-type]
            email=referral.email,
            name=(user.full_name if user else None) or referral.email,
            user_id=user.id if user else referral.user_id,
            status=ClientKind.TRADER,
            ib_type="Trader",
            referral_code=referral.referral_code,
            joined_at=referral.created_at,
            phone=user.phone if user else None,
        )

    async def build_tree(self, session: AsyncSession, root: IBPartner) -> ReferralTreeNode:
        nodes: dict[int, ReferralTreeNode] = {root.id: self._node(root)}  # type: ignore[dict-item]
        frontier = [root.id]
        while frontier:
            children = await list_children(session, frontier)
            frontier = []
            for child in children:
                if child.id in nodes:
                    continue
                node = self._node(child)
                nodes[child.id] = node  # type: ignore[index]
                nodes[child.referred_by].children.append(node)  # type: ignore[index]
                frontier.append(child.id)

        stats = await volume_by_partner(session, list(nodes))
        for partner_id, (count, lots) in stats.items():
            node = nodes[partner_id]
            node.trade_count = count
            node.own_lots = to_decimal(lots)
        self._fill_team_lots(nodes[root.id])  # type: ignore[index]
        return nodes[root.id]  # type: ignore[index]

    def _fill_team_lots(self, node: ReferralTreeNode) -> Decimal:
        node.team_lots = node.own_lots + sum(
            (self._fill_team_lots(child) for child in node.children), ZERO
        )
        return node.team_lots

    @staticmethod
    def _node(partner: IBPartner) -> ReferralTreeNode:
        return ReferralTreeNode(
            partner_id=partner.id,  # type: ignore[arg-type]
            full_name=partner.full_name,
            email=partner.email,
            status=partner.status,
            ib_type=partner.ib_type,
        )

    def build_link(self, partner: IBPartner) -> str:
        return f"{self._frontend_url}/register?referralCode={partner.referral_code or ''}"


__all__ = [
    "ClientKind",
    "ReferralCodeError",
    "ReferralService",
    "ReferralTreeNode",
    "ReferredClient",
    "generate_code",
    "normalize_code",
]
