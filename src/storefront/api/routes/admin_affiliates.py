"""
Admin routes for the affiliate program.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from storefront.api.middleware.auth_context import CurrentUser, require_admin
from storefront.api.schemas import (
    AdminOverviewResponse,
    AffiliateAdminUpdateRequest,
    AffiliateResponse,
    AffiliateSettingsResponse,
    AffiliateSettingsUpdateRequest,
    ApplicationResponse,
    ApprovedCommissionsResponse,
    ApproveApplicationRequest,
    ConversionResponse,
    CreatePayoutRequest,
    MarkPayoutFailedRequest,
    MarkPayoutPaidRequest,
    PayoutResponse,
    RejectApplicationRequest,
)
from storefront.database.connection import get_db
from storefront.database.models import PayoutStatus
from storefront.services.affiliate_service import AffiliateChanges, AffiliateService
from storefront.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _value(enum_value):
    return enum_value.value if enum_value is not None else None


@router.get("", response_model=List[AffiliateResponse])
def list_affiliates(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return AffiliateService(db).list_affiliates()


@router.get("/overview", response_model=AdminOverviewResponse)
def get_overview(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Program dashboard: counts, 30-day activity, commissions and payouts."""
    return AffiliateService(db).get_admin_overview()


@router.get("/applications", response_model=List[ApplicationResponse])
def list_applications(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Pending applications, newest first."""
    return AffiliateService(db).list_pending_applications()


@router.post("/applications/{application_id}/approve", response_model=AffiliateResponse)
def approve_application(
    application_id: str,
    request: Optional[ApproveApplicationRequest] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    commission_rate = request.commission_rate if request else None
    return AffiliateService(db).approve_application(application_id, admin.id, commission_rate=commission_rate)


@router.post("/applications/{application_id}/reject", response_model=ApplicationResponse)
def reject_application(
    application_id: str,
    request: RejectApplicationRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return AffiliateService(db).reject_application(application_id, admin.id, request.reason)


@router.get("/settings", response_model=AffiliateSettingsResponse)
def get_settings(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return AffiliateService(db).get_settings()


@router.patch("/settings", response_model=AffiliateSettingsResponse)
def update_settings(
    request: AffiliateSettingsUpdateRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    changes = request.model_dump(exclude_unset=True, mode="json")
    logger.info(f"Admin {admin.id} updating affiliate settings: {sorted(changes)}")
    return AffiliateService(db).update_settings(changes)


@router.post("/commissions/approve", response_model=ApprovedCommissionsResponse)
def approve_commissions(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Approve pending commissions past the hold period now instead of waiting for the daily job."""
    return ApprovedCommissionsResponse(approved=AffiliateService(db).approve_pending_commissions())


@router.get("/payouts", response_model=List[PayoutResponse])
def list_payouts(
    affiliate_id: Optional[str] = Query(None),
    payout_status: Optional[PayoutStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return AffiliateService(db).list_payouts(affiliate_id=affiliate_id, status=_value(payout_status))


@router.post("/payouts/{payout_id}/paid", response_model=PayoutResponse)
def mark_payout_paid(
    payout_id: str,
    request: Optional[MarkPayoutPaidRequest] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    transaction_id = request.transaction_id if request else None
    return AffiliateService(db).mark_payout_paid(payout_id, admin.id, transaction_id=transaction_id)


@router.post("/payouts/{payout_id}/failed", response_model=PayoutResponse)
def mark_payout_failed(
    payout_id: str,
    request: Optional[MarkPayoutFailedRequest] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Fail a payout; its conversions become available for the next payout."""
    notes = request.notes if request else None
    return AffiliateService(db).mark_payout_failed(payout_id, admin.id, notes=notes)


@router.post("/conversions/{conversion_id}/cancel", response_model=ConversionResponse)
def cancel_conversion(
    conversion_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return AffiliateService(db).cancel_conversion(conversion_id)


@router.patch("/{affiliate_id}", response_model=AffiliateResponse)
def update_affiliate(
    affiliate_id: str,
    request: AffiliateAdminUpdateRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Update commission terms, status or profile of an affiliate."""
    changes = AffiliateChanges(
        company_name=request.company_name,
        website=request.website,
        promotional_methods=request.promotional_methods,
        audience_size=request.audience_size,
        commission_type=_value(request.commission_type),
        commission_rate=request.commission_rate,
        status=_value(request.status),
        paypal_email=request.paypal_email,
        bank_account_info=request.bank_account_info,
        preferred_payout_method=_value(request.preferred_payout_method),
        minimum_payout_threshold=request.minimum_payout_threshold,
    )
    logger.info(f"Admin {admin.id} updating affiliate {affiliate_id}")
    return AffiliateService(db).update_affiliate(affiliate_id, changes)


@router.post("/{affiliate_id}/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
def create_payout(
    affiliate_id: str,
    request: Optional[CreatePayoutRequest] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Bundle the affiliate's approved commissions into a pending payout."""
    return AffiliateService(db).create_payout(
        affiliate_id,
        processed_by=admin.id,
        method=_value(request.payout_method) if request else None,
        notes=request.notes if request else None,
    )
