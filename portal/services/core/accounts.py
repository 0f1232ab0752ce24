"""Связка партнёр -> клиент CRM -> MT5-счета."""

from __future__ import annotations

from dataclasses import dataclass

from sqlmodel.ext.asyncio.session import AsyncSession

from portal.models import ClientUser, IBPartner, TradingAccount
from portal.repositories import get_account, get_user_by_email, list_accounts_for_user
from portal.services.commission.group_keys import is_demo


@dataclass(frozen=True, slots=True)
class AccountRef:
    """Счёт, который синхронизируется в пользу партнёра."""

    account_id: str
    ib_request_id: int
    user_id: str | None = None
    account_type: str | None = None
    package: str | None = None

    @property
    def is_demo(self) -> bool:
        return is_demo(self.account_type, self.package)


def is_live_account(account: TradingAccount) -> bool:
    return not is_demo(account.account_type, account.package)


class AccountDirectory:
    """Идентификационный join: email партнёра -> users -> mt5_accounts."""

    async def linked_user(self, session: AsyncSession, partner: IBPartner) -> ClientUser | None:
        return await get_user_by_email(session, partner.email)

    async def list_accounts(
        self, session: AsyncSession, partner: IBPartner
    ) -> list[TradingAccount]:
        user = await self.linked_user(session, partner)
        if user is None:
            return []
        return list(await list_accounts_for_user(session, user.id))

    async def sync_targets(self, session: AsyncSession, partner: IBPartner) -> list[AccountRef]:
        """Живые счета партнёра для авто-синхронизации."""

        return [
            self.to_ref(account, partner.id)  # type: ignore[arg-type]
            for account in await self.list_accounts(session, partner)
            if is_live_account(account)
        ]

    async def live_account_ids(self, session: AsyncSession, partner: IBPartner) -> frozenset[str]:
        return frozenset(ref.account_id for ref in await self.sync_targets(session, partner))

    async def resolve(
        self, session: AsyncSession, account_id: str, ib_request_id: int
    ) -> AccountRef:
        """Ссылка на счёт для ручной синхронизации (счёта может не быть в CRM)."""

        account = await get_account(session, account_id)
        if account is None:
            return AccountRef(account_id=account_id, ib_request_id=ib_request_id)
        return self.to_ref(account, ib_request_id)

    @staticmethod
    def to_ref(account: TradingAccount, ib_request_id: int) -> AccountRef:
        return AccountRef(
            account_id=account.account_id,
            ib_request_id=ib_request_id,
            user_id=account.user_id,
            account_type=account.account_type,
            package=account.package,
        )


__all__ = ["AccountDirectory", "AccountRef", "is_live_account"]
