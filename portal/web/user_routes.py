"""Кабинет партнёра: дашборды, сделки, выводы, рефералы."""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal.context import PortalServices
from portal.models import IBPartner, TradingAccount
from portal.repositories import get_snapshot, list_children, list_partner_trades, list_referrals
from portal.services.broker.mt5_client import ClientProfile
from portal.services.commission.aggregator import CommissionBucket
from portal.services.commission.withdrawals import withdrawal_as_dict
from portal.services.core.accounts import is_live_account
from portal.utils.numbers import ZERO, to_display
from .deps import get_current_partner, get_db_session, get_services, ok
from .schemas import ReferralCodeRequest, WithdrawalCreateRequest, partner_as_dict, trade_as_dict

router = APIRouter(prefix="/api/user")

_PROFILE_CONCURRENCY = 4


async def _load_profiles(
    services: PortalServices, accounts: list[TradingAccount]
) -> dict[str, ClientProfile | None]:
    """Живые цифры MT5; недоступный брокер даёт None, а не ошибку страницы."""

    semaphore = asyncio.Semaphore(_PROFILE_CONCURRENCY)

    async def _one(account_id: str) -> ClientProfile | None:
        async with semaphore:
            return await services.broker.get_client_profile(account_id)

    results = await asyncio.gather(
        *(_one(account.account_id) for account in accounts), return_exceptions=True
    )
    profiles: dict[str, ClientProfile | None] = {}
    for account, result in zip(accounts, results):
        if isinstance(result, Exception):
            logger.warning(
                "Профиль {account} недоступен: {error}", account=account.account_id, error=result
            )
            result = None
        profiles[account.account_id] = result
    return profiles


def _account_as_dict(account: TradingAccount, profile: ClientProfile | None) -> dict:
    return {
        "account_id": account.account_id,
        "account_type": account.account_type,
        "package": account.package,
        "is_live": is_live_account(account),
        "group": profile.group if profile else None,
        "balance": to_display(profile.balance if profile else ZERO),
        "equity": to_display(profile.equity if profile else ZERO),
        "margin": to_display(profile.margin if profile else ZERO),
        "profit": to_display(profile.profit if profile else ZERO),
        "leverage": (profile.leverage if profile else None) or account.leverage,
        "status": "online" if profile else "unavailable",
    }


@router.get("/overview")
async def overview(
    period_days: int | None = Query(None, ge=1, le=3650),
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    accounts = await services.accounts.list_accounts(session, partner)
    rule_map = await services.rule_store.load(session, partner)
    profiles = await _load_profiles(services, accounts)
    own = await services.aggregator.own_summary(partner, period_days)

    live = [account for account in accounts if is_live_account(account)]
    balance = sum(
        (profiles[a.account_id].balance for a in live if profiles.get(a.account_id)), Decimal(0)
    )
    equity = sum(
        (profiles[a.account_id].equity for a in live if profiles.get(a.account_id)), Decimal(0)
    )
    return ok(
        {
            "stats": {
                "total_accounts": len(accounts),
                "live_accounts": len(live),
                "total_balance": to_display(balance),
                "total_equity": to_display(equity),
                "total_trades": own.total_trades,
                "total_lots": to_display(own.total_lots),
                "total_commission": to_display(own.total),
            },
            "accounts": [_account_as_dict(a, profiles.get(a.account_id)) for a in accounts],
            "groups": [
                {
                    "group_id": rule.group_id,
                    "group_name": rule.group_name,
                    "structure_name": rule.structure_name,
                    "usd_per_lot": to_display(rule.usd_per_lot),
                    "spread_share_percentage": to_display(rule.spread_share_percentage),
                }
                for rule in rule_map
            ],
            "commission_by_type": {
                "fixed": to_display(own.fixed),
                "spread": to_display(own.spread),
            },
            "summary": own.as_dict(breakdowns=False),
        }
    )


@router.get("/dashboard")
async def dashboard(
    period_days: int | None = Query(None, ge=1, le=3650),
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """Собственная торговля и даунлайн - две отдельные метрики."""

    own = await services.aggregator.own_summary(partner, period_days)
    downline = await services.aggregator.downline_summary(partner, period_days)
    snapshot = await get_snapshot(session, partner.id)  # type: ignore[arg-type]
    return ok(
        {
            "partner": partner_as_dict(partner),
            "own": own.as_dict(breakdowns=False),
            "downline": downline.as_dict(breakdowns=False),
            "last_synced_at": snapshot.last_updated.isoformat() if snapshot else None,
            "referral_link": services.referrals.build_link(partner),
        }
    )


@router.get("/commission")
async def commission(
    period_days: int | None = Query(None, ge=1, le=3650),
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
) -> dict:
    summary = await services.aggregator.earned_summary(partner, period_days)
    return ok(summary.as_dict())


@router.get("/quick-reports")
async def quick_reports(
    days: int = Query(30, ge=1, le=365),
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    summary = await services.aggregator.earned_summary(partner, days)
    since = (datetime.now(timezone.utc) - timedelta(days=days)).date()

    registrations: Counter[str] = Counter()
    for child in await list_children(session, [partner.id]):  # type: ignore[list-item]
        if child.submitted_at and child.submitted_at.date() >= since:
            registrations[child.submitted_at.date().isoformat()] += 1
    for referral in await list_referrals(session, [partner.id]):  # type: ignore[list-item]
        if referral.created_at and referral.created_at.date() >= since:
            registrations[referral.created_at.date().isoformat()] += 1

    by_day = {row["key"]: row for row in summary.as_dict()["by_day"]}
    series = []
    for offset in range(days, -1, -1):
        day = (datetime.now(timezone.utc) - timedelta(days=offset)).date().isoformat()
        row = by_day.get(day)
        series.append(
            {
                "date": day,
                "commission": row["total"] if row else 0.0,
                "lots": row["lots"] if row else 0.0,
                "trades": row["trades"] if row else 0,
                "registrations": registrations.get(day, 0),
            }
        )
    return ok({"series": series, "totals": summary.as_dict(breakdowns=False)})


@router.get("/trades")
async def trades(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    partner: IBPartner = Depends(get_current_partner),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    rows, total = await list_partner_trades(session, partner.id, limit=limit, offset=offset)  # type: ignore[arg-type]
    return ok({"trades": [trade_as_dict(row) for row in rows], "total": total})


@router.get("/withdrawals/summary")
async def withdrawal_summary(
    period_days: int | None = Query(None, ge=1, le=3650),
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
) -> dict:
    summary = await services.withdrawals.get_summary(partner, period_days)
    recent = await services.withdrawals.list(
        partner, limit=get_settings().withdrawals.recent_limit
    )
    return ok({"summary": summary.as_dict(), "recent": [withdrawal_as_dict(w) for w in recent]})


@router.post("/withdrawals", status_code=201)
async def create_withdrawal(
    payload: WithdrawalCreateRequest,
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
) -> dict:
    withdrawal = await services.withdrawals.create(
        partner, payload.amount, payload.method, payload.account_details
    )
    summary = await services.withdrawals.get_summary(partner, use_cache=False)
    return ok({"withdrawal": withdrawal_as_dict(withdrawal), "summary": summary.as_dict()})


@router.get("/withdrawals")
async def list_withdrawals(
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
) -> dict:
    if status:
        rows = await services.withdrawals.list_by_status(partner, status, limit=limit)
    else:
        rows = await services.withdrawals.list(partner, limit=limit)
    return ok([withdrawal_as_dict(row) for row in rows])


@router.put("/referral-code")
async def update_referral_code(
    payload: ReferralCodeRequest,
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await services.referrals.update_code(session, partner, payload.referral_code)
    return ok(
        {
            "referral_code": partner.referral_code,
            "referral_link": services.referrals.build_link(partner),
        }
    )


@router.get("/referral-link")
async def referral_link(
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
) -> dict:
    return ok(
        {
            "referral_code": partner.referral_code,
            "referral_link": services.referrals.build_link(partner),
        }
    )


@router.get("/ib-tree")
async def ib_tree(
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    tree = await services.referrals.build_tree(session, partner)
    return ok(tree.as_dict())


@router.get("/clients")
async def clients(
    period_days: int | None = Query(None, ge=1, le=3650),
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """Прямые рефералы с их объёмом, комиссией и последней сделкой."""

    referred = await services.referrals.list_clients(session, partner)
    downline = await services.aggregator.downline_summary(partner, period_days)

    items = []
    lots = commission = ZERO
    active = 0
    for client in referred:
        bucket = downline.by_user.get(client.user_id) if client.user_id else None
        bucket = bucket or CommissionBucket()
        lots += bucket.lots
        commission += bucket.total
        if bucket.last_trade_at is not None:
            active += 1
        items.append({**client.as_dict(), **bucket.as_dict()})
    return ok(
        {
            "clients": items,
            "stats": {
                "total_clients": len(items),
                "total_lots": to_display(lots),
                "total_commission": to_display(commission),
                "active_traders": active,
            },
        }
    )


@router.get("/clients/traders")
async def client_traders(
    partner: IBPartner = Depends(get_current_partner),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    traders = await services.referrals.list_traders(session, partner)
    return ok(
        {
            "traders": [
                {
                    **trader.as_dict(),
                    "referred_by_name": partner.full_name,
                    "referred_by_email": partner.email,
                }
                for trader in traders
            ]
        }
    )


__all__ = ["router"]
