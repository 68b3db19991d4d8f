"""
Affiliate program models.

Affiliates are approved from applications, earn commission on conversions
attributed through tracked clicks, and are paid in payouts that bundle
approved conversions.
"""

import enum
from functools import partial

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text, JSON,
    ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow, generate_id, in_check


class CommissionType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"
    TIERED = "tiered"


class AffiliateStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class PayoutMethod(str, enum.Enum):
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"


class PayoutSchedule(str, enum.Enum):
    MONTHLY = "monthly"
    BI_MONTHLY = "bi_monthly"
    MANUAL = "manual"


class Affiliate(Base):
    """Approved affiliate account with denormalized performance totals."""

    __tablename__ = "affiliates"

    # Primary Key
    id = Column(String(64), primary_key=True, default=partial(generate_id, "aff"))

    # Identity
    user_id = Column(String(128), nullable=False, unique=True)
    affiliate_code = Column(String(32), nullable=False, unique=True)
    company_name = Column(String(255), nullable=True)
    website = Column(String(500), nullable=True)
    promotional_methods = Column(JSON, nullable=False, default=list)
    audience_size = Column(String(100), nullable=True)

    # Commission
    commission_type = Column(String(20), nullable=False, default=CommissionType.PERCENTAGE.value)
    commission_rate = Column(Float, nullable=False, default=10.0)

    # Status
    status = Column(String(20), nullable=False, default=AffiliateStatus.PENDING.value)
    approved_by = Column(String(128), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_reason = Column(Text, nullable=True)

    # Payout details (bank info is Fernet-encrypted)
    paypal_email = Column(String(255), nullable=True)
    bank_account_info = Column(Text, nullable=True)
    preferred_payout_method = Column(String(20), nullable=False, default=PayoutMethod.PAYPAL.value)
    minimum_payout_threshold = Column(Float, nullable=False, default=50.0)

    # Performance totals
    total_clicks = Column(Integer, nullable=False, default=0)
    total_conversions = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Float, nullable=False, default=0.0)
    total_commission_earned = Column(Float, nullable=False, default=0.0)
    total_commission_paid = Column(Float, nullable=False, default=0.0)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    clicks = relationship("AffiliateClick", back_populates="affiliate", cascade="all, delete-orphan")
    conversions = relationship("AffiliateConversion", back_populates="affiliate", cascade="all, delete-orphan")
    payouts = relationship("AffiliatePayout", back_populates="affiliate", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(in_check("commission_type", CommissionType), name="ck_affiliates_commission_type"),
        CheckConstraint(in_check("status", AffiliateStatus), name="ck_affiliates_status"),
        CheckConstraint(in_check("preferred_payout_method", PayoutMethod), name="ck_affiliates_payout_method"),
        Index("ix_affiliates_status", "status"),
    )

    def __repr__(self):
        return f"<Affiliate(id={self.id}, code='{self.affiliate_code}', status='{self.status}')>"


class AffiliateApplication(Base):
    """Application submitted by a customer to join the program."""

    __tablename__ = "affiliate_applications"

    # Primary Key
    id = Column(String(64), primary_key=True, default=partial(generate_id, "app"))

    # Applicant
    user_id = Column(String(128), nullable=False, index=True)
    applicant_name = Column(String(255), nullable=True)
    applicant_email = Column(String(255), nullable=True)

    # Application details
    company_name = Column(String(255), nullable=True)
    website = Column(String(500), nullable=False)
    promotional_methods = Column(JSON, nullable=False, default=list)
    audience_size = Column(String(100), nullable=True)
    promotion_plan = Column(Text, nullable=False)
    social_media_links = Column(JSON, nullable=True)
    monthly_traffic = Column(String(100), nullable=True)
    paypal_email = Column(String(255), nullable=True)
    preferred_payout_method = Column(String(20), nullable=False, default=PayoutMethod.PAYPAL.value)

    # Review
    status = Column(String(20), nullable=False, default=ApplicationStatus.PENDING.value)
    reviewed_by = Column(String(128), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(in_check("status", ApplicationStatus), name="ck_affiliate_applications_status"),
        Index("ix_affiliate_applications_status", "status"),
    )

    def __repr__(self):
        return f"<AffiliateApplication(id={self.id}, user_id='{self.user_id}', status='{self.status}')>"


class AffiliateClick(Base):
    """Referral click; the session token links it to a later conversion."""

    __tablename__ = "affiliate_clicks"

    id = Column(String(64), primary_key=True, default=partial(generate_id, "click"))
    affiliate_id = Column(String(64), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False, index=True)
    affiliate_code = Column(String(32), nullable=False)

    # Visitor
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    referrer_url = Column(Text, nullable=True)
    landing_page = Column(Text, nullable=True)
    session_token = Column(String(128), nullable=True, index=True)

    # Attribution
    converted = Column(Boolean, nullable=False, default=False)
    order_id = Column(String(128), nullable=True)

    clicked_at = Column(DateTime, default=utcnow, nullable=False)

    affiliate = relationship("Affiliate", back_populates="clicks")

    __table_args__ = (
        Index("ix_affiliate_clicks_affiliate_clicked", "affiliate_id", "clicked_at"),
    )

    def __repr__(self):
        return f"<AffiliateClick(id={self.id}, affiliate_id={self.affiliate_id}, converted={self.converted})>"


class AffiliateConversion(Base):
    """Commissionable order; at most one per order id."""

    __tablename__ = "affiliate_conversions"

    id = Column(String(64), primary_key=True, default=partial(generate_id, "conv"))
    affiliate_id = Column(String(64), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False, index=True)
    affiliate_code = Column(String(32), nullable=False)
    click_id = Column(String(64), ForeignKey("affiliate_clicks.id", ondelete="SET NULL"), nullable=True)
    order_id = Column(String(128), nullable=False, unique=True)
    customer_id = Column(String(128), nullable=True)

    # Commission
    order_total = Column(Float, nullable=False)
    commission_rate = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False)
    commission_status = Column(String(20), nullable=False, default=CommissionStatus.PENDING.value)
    payout_id = Column(String(64), ForeignKey("affiliate_payouts.id", ondelete="SET NULL"), nullable=True)

    # Timestamps
    converted_at = Column(DateTime, default=utcnow, nullable=False)
    approved_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    affiliate = relationship("Affiliate", back_populates="conversions")

    __table_args__ = (
        CheckConstraint(in_check("commission_status", CommissionStatus), name="ck_affiliate_conversions_status"),
        Index("ix_affiliate_conversions_status", "commission_status"),
        Index("ix_affiliate_conversions_affiliate_converted", "affiliate_id", "converted_at"),
    )

    def __repr__(self):
        return (
            f"<AffiliateConversion(id={self.id}, order_id='{self.order_id}', "
            f"commission={self.commission_amount}, status='{self.commission_status}')>"
        )


class AffiliatePayout(Base):
    """Payment bundling a set of approved conversions."""

    __tablename__ = "affiliate_payouts"

    id = Column(String(64), primary_key=True, default=partial(generate_id, "payout"))
    affiliate_id = Column(String(64), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    payout_method = Column(String(20), nullable=False)
    payout_status = Column(String(20), nullable=False, default=PayoutStatus.PENDING.value)
    transaction_id = Column(String(255), nullable=True)
    payout_date = Column(DateTime, nullable=True)
    payout_notes = Column(Text, nullable=True)

    # Included conversions and their date range
    conversion_ids = Column(JSON, nullable=False, default=list)
    from_date = Column(DateTime, nullable=False)
    to_date = Column(DateTime, nullable=False)

    processed_by = Column(String(128), nullable=True)
    processed_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    affiliate = relationship("Affiliate", back_populates="payouts")

    __table_args__ = (
        CheckConstraint(in_check("payout_status", PayoutStatus), name="ck_affiliate_payouts_status"),
        CheckConstraint(in_check("payout_method", PayoutMethod), name="ck_affiliate_payouts_method"),
        Index("ix_affiliate_payouts_status", "payout_status"),
    )

    def __repr__(self):
        return f"<AffiliatePayout(id={self.id}, amount={self.amount}, status='{self.payout_status}')>"


class AffiliateSettings(Base):
    """Program-wide settings; a single row with id 'default'."""

    __tablename__ = "affiliate_settings"

    id = Column(String(32), primary_key=True, default="default")

    program_enabled = Column(Boolean, nullable=False, default=True)
    auto_approve_affiliates = Column(Boolean, nullable=False, default=False)
    default_commission_type = Column(String(20), nullable=False, default=CommissionType.PERCENTAGE.value)
    default_commission_rate = Column(Float, nullable=False, default=10.0)
    cookie_duration_days = Column(Integer, nullable=False, default=30)
    minimum_payout_threshold = Column(Float, nullable=False, default=50.0)
    payout_schedule = Column(String(20), nullable=False, default=PayoutSchedule.MONTHLY.value)
    commission_hold_days = Column(Integer, nullable=False, default=30)
    require_website = Column(Boolean, nullable=False, default=True)
    require_traffic_info = Column(Boolean, nullable=False, default=False)
    terms_text = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(in_check("default_commission_type", CommissionType), name="ck_affiliate_settings_type"),
        CheckConstraint(in_check("payout_schedule", PayoutSchedule), name="ck_affiliate_settings_schedule"),
    )

    def __repr__(self):
        return f"<AffiliateSettings(enabled={self.program_enabled}, rate={self.default_commission_rate})>"
