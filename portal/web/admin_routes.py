"""Админские ручки: одобрение IB, синхронизация, каталог групп, выводы."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from portal.context import PortalServices
from portal.errors import NotFound
from portal.models import IBPartner
from portal.repositories import get_partner, search_referrals
from portal.services.commission.withdrawals import withdrawal_as_dict
from .deps import get_db_session, get_services, ok, require_admin
from .schemas import (
    StatusUpdateRequest,
    StructureCreateRequest,
    WithdrawalStatusRequest,
    partner_as_dict,
)

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


async def _approved_partner(session: AsyncSession, partner_id: int) -> IBPartner:
    partner = await get_partner(session, partner_id)
    if partner is None or not partner.is_approved:
        raise NotFound("Одобренный IB не найден")
    return partner


@router.get("/partners")
async def list_partners(
    status: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partners = await services.partners.list_partners(
        session, status=status, limit=limit, offset=offset
    )
    return ok([partner_as_dict(partner) for partner in partners])


@router.put("/partners/{partner_id}/status")
async def update_partner_status(
    partner_id: int,
    payload: StatusUpdateRequest,
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await services.partners.set_status(
        session,
        partner_id,
        payload.status,
        rules=payload.rules(),
        admin_comments=payload.admin_comments,
        ib_type=payload.ib_type,
    )
    return ok(partner_as_dict(partner))


@router.get("/partners/{partner_id}/commission")
async def partner_commission(
    partner_id: int,
    period_days: int | None = Query(None, ge=1, le=3650),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await _approved_partner(session, partner_id)
    summary = await services.aggregator.earned_summary(partner, period_days, use_cache=False)
    return ok(summary.as_dict())


@router.post("/sync/run")
async def run_sync(services: PortalServices = Depends(get_services)) -> dict:
    report = await services.scheduler.tick()
    return ok(report.as_dict())


@router.get("/sync/status")
async def sync_status(services: PortalServices = Depends(get_services)) -> dict:
    last = services.scheduler.last_report
    return ok(
        {
            "state": services.scheduler.state,
            "last_report": last.as_dict() if last else None,
        }
    )


@router.post("/sync/partners/{partner_id}")
async def sync_partner(
    partner_id: int,
    lookback_days: int | None = Query(None, ge=1, le=3650),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await _approved_partner(session, partner_id)
    reports = await services.scheduler.sync_partner(
        partner, lookback_days=lookback_days or get_settings().sync.manual_lookback_days
    )
    return ok([report.as_dict() for report in reports])


@router.post("/sync/accounts/{account_id}")
async def sync_account(
    account_id: str,
    partner_id: int = Query(..., alias="partnerId"),
    lookback_days: int | None = Query(None, ge=1, le=3650),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await _approved_partner(session, partner_id)
    report = await services.scheduler.sync_partner_account(
        partner,
        account_id,
        lookback_days=lookback_days or get_settings().sync.manual_lookback_days,
    )
    return ok(report.as_dict())


@router.post("/groups/sync")
async def sync_groups(
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    count = await services.catalog.sync_from_broker(session)
    return ok({"synced": count})


@router.get("/groups")
async def list_groups(
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    groups = await services.catalog.list_groups(session)
    return ok(
        [
            {
                "group_id": group.group_id,
                "name": group.name,
                "synced_at": group.synced_at.isoformat() if group.synced_at else None,
            }
            for group in groups
        ]
    )


def _structure_as_dict(structure) -> dict:
    return {
        "id": structure.id,
        "group_id": structure.group_id,
        "structure_name": structure.structure_name,
        "usd_per_lot": float(structure.usd_per_lot),
        "spread_share_percentage": float(structure.spread_share_percentage),
        "is_active": structure.is_active,
    }


@router.get("/structures")
async def list_structures(
    group_id: str | None = Query(None, alias="groupId"),
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    structures = await services.catalog.list_structures(session, group_id)
    return ok([_structure_as_dict(structure) for structure in structures])


@router.post("/structures", status_code=201)
async def create_structure(
    payload: StructureCreateRequest,
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    structure = await services.catalog.create_structure(
        session,
        group_id=payload.group_id,
        structure_name=payload.structure_name,
        usd_per_lot=payload.usd_per_lot,
        spread_share_percentage=payload.spread_share_percentage,
        is_active=payload.is_active,
    )
    return ok(_structure_as_dict(structure))


@router.delete("/structures/{structure_id}")
async def delete_structure(
    structure_id: int,
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    await services.catalog.delete_structure(session, structure_id)
    return ok({"deleted": structure_id})


@router.get("/traders")
async def list_traders(
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """Все трейдеры CRM, привязанные к партнёрам по реферальным кодам."""

    rows, total = await search_referrals(
        session, search=search, limit=limit, offset=(page - 1) * limit
    )
    items = [
        {
            "id": referral.id,
            "ib_request_id": referral.ib_request_id,
            "user_id": referral.user_id,
            "email": referral.email,
            "referral_code": referral.referral_code,
            "source": referral.source,
            "created_at": referral.created_at.isoformat() if referral.created_at else None,
            "referred_by_name": owner.full_name,
            "referred_by_email": owner.email,
            "referred_by_code": owner.referral_code,
        }
        for referral, owner in rows
    ]
    return ok({"items": items, "page": page, "limit": limit, "total": total})


@router.put("/withdrawals/{withdrawal_id}/status")
async def update_withdrawal_status(
    withdrawal_id: int,
    payload: WithdrawalStatusRequest,
    services: PortalServices = Depends(get_services),
) -> dict:
    withdrawal = await services.withdrawals.set_status(withdrawal_id, payload.status)
    return ok(withdrawal_as_dict(withdrawal))


__all__ = ["router"]
