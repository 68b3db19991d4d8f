"""
Request and response schemas for the REST API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from storefront.database.models import (
    AffiliateStatus,
    ChannelStatus,
    CommissionType,
    MarketplacePlatform,
    PayoutMethod,
    PayoutSchedule,
    SyncSource,
)
from storefront.services.affiliate_service import PROMOTIONAL_METHODS
from storefront.utils.sanitize import is_http_url


MIN_PROMOTION_PLAN_LENGTH = 50


# ----------------------------------------------------------------------
# Affiliates
# ----------------------------------------------------------------------

class AffiliateApplicationRequest(BaseModel):
    """Application to join the affiliate program."""
    website: str
    promotional_methods: List[str] = Field(..., min_length=1)
    promotion_plan: str
    agree_to_terms: bool
    company_name: Optional[str] = None
    audience_size: Optional[str] = None
    social_media_links: Optional[List[str]] = None
    monthly_traffic: Optional[str] = None
    paypal_email: Optional[EmailStr] = None
    preferred_payout_method: PayoutMethod = PayoutMethod.PAYPAL

    @field_validator('website')
    @classmethod
    def validate_website(cls, v):
        v = v.strip()
        if not is_http_url(v):
            raise ValueError("Invalid website URL. Must be http or https.")
        return v

    @field_validator('promotional_methods')
    @classmethod
    def validate_methods(cls, v):
        invalid = [m for m in v if m not in PROMOTIONAL_METHODS]
        if invalid:
            raise ValueError(f"Invalid promotional methods selected: {', '.join(invalid)}")
        return v

    @field_validator('promotion_plan')
    @classmethod
    def validate_plan(cls, v):
        if len(v.strip()) < MIN_PROMOTION_PLAN_LENGTH:
            raise ValueError(f"Promotion plan must be at least {MIN_PROMOTION_PLAN_LENGTH} characters")
        return v

    @field_validator('agree_to_terms')
    @classmethod
    def validate_terms(cls, v):
        if not v:
            raise ValueError("You must agree to the affiliate terms and conditions")
        return v

    @field_validator('social_media_links')
    @classmethod
    def drop_invalid_links(cls, v):
        if v is None:
            return v
        return [link.strip() for link in v if is_http_url(link.strip())]


class ApplicationResponse(BaseModel):
    id: str
    user_id: str
    applicant_name: Optional[str] = None
    applicant_email: Optional[str] = None
    company_name: Optional[str] = None
    website: str
    promotional_methods: List[str]
    audience_size: Optional[str] = None
    promotion_plan: str
    social_media_links: Optional[List[str]] = None
    monthly_traffic: Optional[str] = None
    preferred_payout_method: str
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApplicationSubmittedResponse(BaseModel):
    message: str
    application: ApplicationResponse


class AffiliateResponse(BaseModel):
    """Affiliate account; bank details are never returned."""
    id: str
    user_id: str
    affiliate_code: str
    company_name: Optional[str] = None
    website: Optional[str] = None
    promotional_methods: List[str]
    audience_size: Optional[str] = None
    commission_type: str
    commission_rate: float
    status: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    paypal_email: Optional[str] = None
    preferred_payout_method: str
    minimum_payout_threshold: float
    total_clicks: int
    total_conversions: int
    total_revenue: float
    total_commission_earned: float
    total_commission_paid: float
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AffiliateSelfUpdateRequest(BaseModel):
    """Changes an affiliate may make to their own account."""
    company_name: Optional[str] = None
    website: Optional[str] = None
    promotional_methods: Optional[List[str]] = None
    audience_size: Optional[str] = None
    paypal_email: Optional[EmailStr] = None
    bank_account_info: Optional[str] = None
    preferred_payout_method: Optional[PayoutMethod] = None

    @field_validator('website')
    @classmethod
    def validate_website(cls, v):
        if v is not None and v.strip() and not is_http_url(v.strip()):
            raise ValueError("Invalid website URL. Must be http or https.")
        return v


class AffiliateAdminUpdateRequest(AffiliateSelfUpdateRequest):
    """Admin changes, including commission terms and status."""
    commission_type: Optional[CommissionType] = None
    commission_rate: Optional[float] = Field(None, ge=0)
    status: Optional[AffiliateStatus] = None
    minimum_payout_threshold: Optional[float] = Field(None, ge=0)


class ApproveApplicationRequest(BaseModel):
    commission_rate: Optional[float] = Field(None, ge=0)


class RejectApplicationRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ClickRequest(BaseModel):
    affiliate_code: str = Field(..., min_length=1)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer_url: Optional[str] = None
    landing_page: Optional[str] = None


class ClickResponse(BaseModel):
    click_id: str
    session_token: str
    affiliate_code: str
    clicked_at: datetime


class ConversionRequest(BaseModel):
    affiliate_code: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    order_total: float = Field(..., ge=0)
    customer_id: Optional[str] = None
    session_token: Optional[str] = None


class ConversionResponse(BaseModel):
    id: str
    affiliate_id: str
    affiliate_code: str
    click_id: Optional[str] = None
    order_id: str
    customer_id: Optional[str] = None
    order_total: float
    commission_rate: float
    commission_amount: float
    commission_status: str
    payout_id: Optional[str] = None
    converted_at: datetime
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecentConversion(BaseModel):
    order_id: str
    order_total: float
    commission_amount: float
    commission_status: str
    converted_at: datetime


class AffiliateStatsResponse(BaseModel):
    affiliate_id: str
    affiliate_code: str
    total_clicks: int
    unique_clicks: int
    total_conversions: int
    conversion_rate: float
    total_revenue: float
    average_order_value: float
    total_commission: float
    pending_commission: float
    approved_commission: float
    paid_commission: float
    next_payout_amount: float
    period_start: datetime
    period_end: datetime
    recent_conversions: List[RecentConversion]


class TopAffiliate(BaseModel):
    affiliate_id: str
    affiliate_code: str
    affiliate_name: str
    conversions: int
    revenue: float
    commission: float


class RecentApplication(BaseModel):
    id: str
    user_id: str
    user_name: str
    user_email: str
    website: str
    created_at: datetime


class AdminOverviewResponse(BaseModel):
    total_affiliates: int
    active_affiliates: int
    suspended_affiliates: int
    pending_applications: int
    total_clicks_30d: int
    total_conversions_30d: int
    total_revenue_30d: float
    average_conversion_rate: float
    total_commission_pending: float
    total_commission_approved: float
    total_commission_paid: float
    pending_payouts_count: int
    pending_payouts_amount: float
    top_affiliates: List[TopAffiliate]
    recent_applications: List[RecentApplication]


class AffiliateSettingsResponse(BaseModel):
    program_enabled: bool
    auto_approve_affiliates: bool
    default_commission_type: str
    default_commission_rate: float
    cookie_duration_days: int
    minimum_payout_threshold: float
    payout_schedule: str
    commission_hold_days: int
    require_website: bool
    require_traffic_info: bool
    terms_text: Optional[str] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class AffiliateSettingsUpdateRequest(BaseModel):
    program_enabled: Optional[bool] = None
    auto_approve_affiliates: Optional[bool] = None
    default_commission_type: Optional[CommissionType] = None
    default_commission_rate: Optional[float] = Field(None, ge=0)
    cookie_duration_days: Optional[int] = Field(None, ge=0)
    minimum_payout_threshold: Optional[float] = Field(None, ge=0)
    payout_schedule: Optional[PayoutSchedule] = None
    commission_hold_days: Optional[int] = Field(None, ge=0)
    require_website: Optional[bool] = None
    require_traffic_info: Optional[bool] = None
    terms_text: Optional[str] = None


class CreatePayoutRequest(BaseModel):
    payout_method: Optional[PayoutMethod] = None
    notes: Optional[str] = None


class MarkPayoutPaidRequest(BaseModel):
    transaction_id: Optional[str] = None


class MarkPayoutFailedRequest(BaseModel):
    notes: Optional[str] = None


class PayoutResponse(BaseModel):
    id: str
    affiliate_id: str
    amount: float
    payout_method: str
    payout_status: str
    transaction_id: Optional[str] = None
    payout_date: Optional[datetime] = None
    payout_notes: Optional[str] = None
    conversion_ids: List[str]
    from_date: datetime
    to_date: datetime
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovedCommissionsResponse(BaseModel):
    approved: int


# ----------------------------------------------------------------------
# Marketplaces
# ----------------------------------------------------------------------

class ChannelCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
    platform: MarketplacePlatform
    status: ChannelStatus = ChannelStatus.INACTIVE
    sync_enabled: bool = True
    sync_frequency_minutes: Optional[int] = Field(None, gt=0)
    credentials: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None


class ChannelUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=100, pattern=r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
    platform: Optional[MarketplacePlatform] = None
    status: Optional[ChannelStatus] = None
    sync_enabled: Optional[bool] = None
    sync_frequency_minutes: Optional[int] = Field(None, gt=0)
    credentials: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None


class ChannelResponse(BaseModel):
    """Channel with secret credentials masked."""
    id: str
    name: str
    slug: str
    platform: str
    status: str
    sync_enabled: bool
    sync_frequency_minutes: Optional[int] = None
    last_synced_at: Optional[datetime] = None
    last_successful_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_message: Optional[str] = None
    credentials: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderItemResponse(BaseModel):
    id: str
    sku: Optional[str] = None
    title: str
    quantity: int
    unit_price: float
    total_price: float
    marketplace_fee: Optional[float] = None
    data: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    channel_id: str
    channel_name: Optional[str] = None
    platform: str
    external_id: str
    external_number: Optional[str] = None
    status: str
    financial_status: str
    fulfillment_status: str
    purchase_date: datetime
    imported_at: datetime
    updated_at: datetime
    acknowledged_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    currency: str
    subtotal: float
    shipping: float
    tax: float
    total: float
    marketplace_fees: Optional[float] = None
    promo_codes: Optional[List[str]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    page_size: int


class OrderEventResponse(BaseModel):
    id: str
    order_id: str
    event_type: str
    event_time: datetime
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class SyncRequestBody(BaseModel):
    channel_id: Optional[str] = None
    platform: Optional[MarketplacePlatform] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = Field(None, gt=0, le=500)
    source: SyncSource = SyncSource.MANUAL


class SyncRunResponse(BaseModel):
    id: str
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    platform: Optional[str] = None
    status: str
    source: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    imported_count: int
    updated_count: int
    skipped_count: int
    error_count: int
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="run_metadata")

    class Config:
        from_attributes = True
        populate_by_name = True


class SyncTotals(BaseModel):
    imported: int
    updated: int
    skipped: int
    errors: int


class SyncResultResponse(BaseModel):
    success: bool
    runs: List[SyncRunResponse]
    totals: SyncTotals
    message: str


class TaxStateRequest(BaseModel):
    channel_id: str
    state_code: str = Field(..., min_length=2, max_length=8)


class TaxStateResponse(BaseModel):
    id: int
    channel_id: str
    platform: str
    state_code: str
    added_at: datetime

    class Config:
        from_attributes = True


class PlatformSummary(BaseModel):
    platform: str
    platform_label: str
    order_count: int
    revenue: float
    fees: float


class ChannelSummary(BaseModel):
    channel_id: str
    name: str
    order_count: int
    revenue: float
    fees: float
    last_synced_at: Optional[datetime] = None


class MarketplaceSummaryResponse(BaseModel):
    total_orders: int
    total_revenue: float
    total_fees: float
    last_sync_at: Optional[datetime] = None
    orders_by_platform: List[PlatformSummary]
    orders_by_channel: List[ChannelSummary]
    recent_orders: List[OrderResponse]


class TrendPoint(BaseModel):
    period: str
    order_count: int
    revenue: float
    fees: float
