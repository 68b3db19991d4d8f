"""
Affiliate self-service and referral tracking routes.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from storefront.api.middleware.auth_context import CurrentUser, get_current_user
from storefront.api.schemas import (
    AffiliateApplicationRequest,
    AffiliateResponse,
    AffiliateSelfUpdateRequest,
    AffiliateStatsResponse,
    ApplicationResponse,
    ApplicationSubmittedResponse,
    ClickRequest,
    ClickResponse,
    ConversionRequest,
    ConversionResponse,
    PayoutResponse,
)
from storefront.database.connection import get_db
from storefront.database.models import Affiliate
from storefront.services.affiliate_service import (
    AffiliateChanges,
    AffiliateService,
    ApplicationInput,
    ClickInput,
    ConversionInput,
)
from storefront.utils.dates import parse_datetime
from storefront.utils.exceptions import ValidationError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _require_own_affiliate(service: AffiliateService, user: CurrentUser) -> Affiliate:
    affiliate = service.get_affiliate_by_user(user.id)
    if affiliate is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Affiliate account not found",
        )
    return affiliate


@router.get("/me", response_model=AffiliateResponse)
def get_my_affiliate(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Affiliate account of the logged-in user."""
    return _require_own_affiliate(AffiliateService(db), user)


@router.post("/apply", response_model=ApplicationSubmittedResponse, status_code=status.HTTP_201_CREATED)
def apply(
    request: AffiliateApplicationRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """
    Apply to become an affiliate.

    Rejected with 403 while the program is disabled. When auto-approval is
    on, the returned application is already approved.
    """
    service = AffiliateService(db)
    settings = service.get_settings()
    if not settings.program_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Affiliate program is currently not accepting new applications",
        )
    if settings.require_traffic_info and not (request.monthly_traffic or "").strip():
        raise ValidationError("Monthly traffic information is required", field="monthly_traffic")

    application = service.submit_application(
        user.id,
        ApplicationInput(
            website=request.website,
            promotional_methods=request.promotional_methods,
            promotion_plan=request.promotion_plan,
            company_name=request.company_name,
            audience_size=request.audience_size,
            social_media_links=request.social_media_links,
            monthly_traffic=request.monthly_traffic,
            paypal_email=request.paypal_email,
            preferred_payout_method=request.preferred_payout_method.value,
        ),
        applicant_name=user.name,
        applicant_email=user.email,
    )

    return ApplicationSubmittedResponse(
        message="Application submitted successfully",
        application=ApplicationResponse.model_validate(application),
    )


@router.get("/me/stats", response_model=AffiliateStatsResponse)
def get_my_stats(
    start_date: Optional[str] = Query(None, description="ISO start of the window"),
    end_date: Optional[str] = Query(None, description="ISO end of the window"),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Performance over a window, the last 30 days by default."""
    service = AffiliateService(db)
    affiliate = _require_own_affiliate(service, user)
    return service.get_affiliate_stats(
        affiliate.id,
        start=parse_datetime(start_date, field="start_date"),
        end=parse_datetime(end_date, field="end_date"),
    )


@router.get("/me/payouts", response_model=List[PayoutResponse])
def get_my_payouts(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    service = AffiliateService(db)
    affiliate = _require_own_affiliate(service, user)
    return service.list_payouts(affiliate_id=affiliate.id)


@router.patch("/me", response_model=AffiliateResponse)
def update_my_affiliate(
    request: AffiliateSelfUpdateRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Update profile and payout details; commission terms are admin-only."""
    service = AffiliateService(db)
    affiliate = _require_own_affiliate(service, user)
    changes = AffiliateChanges(
        company_name=request.company_name,
        website=request.website,
        promotional_methods=request.promotional_methods,
        audience_size=request.audience_size,
        paypal_email=request.paypal_email,
        bank_account_info=request.bank_account_info,
        preferred_payout_method=request.preferred_payout_method.value if request.preferred_payout_method else None,
    )
    return service.update_affiliate(affiliate.id, changes)


@router.post("/track/click", response_model=ClickResponse, status_code=status.HTTP_201_CREATED)
def track_click(
    payload: ClickRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Record a referral click.

    The visitor's IP and user agent are taken from the request when the
    caller does not supply them.
    """
    click = AffiliateService(db).track_click(
        ClickInput(
            affiliate_code=payload.affiliate_code,
            ip_address=payload.ip_address or (request.client.host if request.client else None),
            user_agent=payload.user_agent or request.headers.get("user-agent"),
            referrer_url=payload.referrer_url or request.headers.get("referer"),
            landing_page=payload.landing_page,
        )
    )
    return ClickResponse(
        click_id=click.id,
        session_token=click.session_token,
        affiliate_code=click.affiliate_code,
        clicked_at=click.clicked_at,
    )


@router.post("/track/conversion", response_model=ConversionResponse, status_code=status.HTTP_201_CREATED)
def track_conversion(
    payload: ConversionRequest,
    db: Session = Depends(get_db),
):
    """Record a commissionable order; a second report for the same order is a 409."""
    return AffiliateService(db).record_conversion(
        ConversionInput(
            affiliate_code=payload.affiliate_code,
            order_id=payload.order_id,
            order_total=payload.order_total,
            customer_id=payload.customer_id,
            session_token=payload.session_token,
        )
    )
