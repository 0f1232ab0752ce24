"""Публичные ручки: заявка IB, вход, реферальные коды."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from portal.context import PortalServices
from portal.models import IBPartner
from portal.utils.security import issue_session_token
from .deps import get_current_partner, get_db_session, get_services, ok
from .schemas import ApplyRequest, LoginRequest, ReferralAttachRequest, ReferralCodeRequest, partner_as_dict

router = APIRouter(prefix="/api")


@router.post("/auth/apply", status_code=201)
async def apply_partner(
    payload: ApplyRequest,
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await services.partners.apply(
        session,
        full_name=payload.full_name,
        email=payload.email,
        password=payload.password,
        ib_type=payload.ib_type,
        referral_code=payload.referral_code,
    )
    return ok(partner_as_dict(partner), message="Заявка отправлена на рассмотрение")


@router.post("/auth/login")
async def login(
    payload: LoginRequest,
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await services.partners.authenticate(session, payload.email, payload.password)
    token = issue_session_token(partner.id, partner.email)  # type: ignore[arg-type]
    return ok({"token": token, "partner": partner_as_dict(partner)})


@router.get("/auth/me")
async def me(partner: IBPartner = Depends(get_current_partner)) -> dict:
    return ok(partner_as_dict(partner))


@router.post("/public/referrals/resolve")
async def resolve_referral(
    payload: ReferralCodeRequest,
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    partner = await services.referrals.resolve(session, payload.referral_code)
    return ok({"ib_id": partner.id, "name": partner.full_name, "referral_code": partner.referral_code})


@router.post("/public/referrals/attach", status_code=201)
async def attach_referral(
    payload: ReferralAttachRequest,
    services: PortalServices = Depends(get_services),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    referral = await services.referrals.attach(
        session, code=payload.referral_code, email=payload.email, source=payload.source
    )
    return ok(
        {
            "id": referral.id,
            "ib_id": referral.ib_request_id,
            "email": referral.email,
            "user_id": referral.user_id,
        }
    )


__all__ = ["router"]
