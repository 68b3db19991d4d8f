"""
Affiliate program service.

Covers the full affiliate lifecycle: applications and approval, referral
click tracking, conversion attribution with order deduplication, commission
calculation, hold-period approval and payout aggregation.
"""

import random
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import func, distinct
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.database.models import (
    Affiliate,
    AffiliateApplication,
    AffiliateClick,
    AffiliateConversion,
    AffiliatePayout,
    AffiliateSettings,
    AffiliateStatus,
    ApplicationStatus,
    CommissionStatus,
    CommissionType,
    PayoutMethod,
    PayoutSchedule,
    PayoutStatus,
    utcnow,
)
from storefront.monitoring.prometheus_metrics import get_metrics
from storefront.security.encryption import get_encryptor
from storefront.utils.exceptions import ConflictError, NotFoundError, ValidationError
from storefront.utils.logger import get_logger
from storefront.utils.sanitize import sanitize_input, sanitize_list, sanitize_optional

logger = get_logger(__name__)


SETTINGS_ID = "default"
STATS_WINDOW_DAYS = 30
CODE_PREFIX_LENGTH = 6
CODE_RETRY_ATTEMPTS = 100
RECENT_CONVERSIONS_LIMIT = 10
TOP_AFFILIATES_LIMIT = 5
RECENT_APPLICATIONS_LIMIT = 5

PROMOTIONAL_METHODS = (
    "blog", "social_media", "email", "paid_ads",
    "youtube", "podcast", "influencer", "other",
)


@dataclass
class ApplicationInput:
    """Data submitted with an affiliate application."""
    website: str
    promotional_methods: List[str]
    promotion_plan: str
    company_name: Optional[str] = None
    audience_size: Optional[str] = None
    social_media_links: Optional[List[str]] = None
    monthly_traffic: Optional[str] = None
    paypal_email: Optional[str] = None
    preferred_payout_method: str = PayoutMethod.PAYPAL.value


@dataclass
class ClickInput:
    """Referral click reported by the storefront."""
    affiliate_code: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer_url: Optional[str] = None
    landing_page: Optional[str] = None


@dataclass
class ConversionInput:
    """Completed order that carries an affiliate code."""
    affiliate_code: str
    order_id: str
    order_total: float
    customer_id: Optional[str] = None
    session_token: Optional[str] = None
    converted_at: Optional[datetime] = None


@dataclass
class AffiliateChanges:
    """Partial update of an affiliate; None means unchanged."""
    company_name: Optional[str] = None
    website: Optional[str] = None
    promotional_methods: Optional[List[str]] = None
    audience_size: Optional[str] = None
    commission_type: Optional[str] = None
    commission_rate: Optional[float] = None
    status: Optional[str] = None
    paypal_email: Optional[str] = None
    bank_account_info: Optional[str] = None
    preferred_payout_method: Optional[str] = None
    minimum_payout_threshold: Optional[float] = None

    def is_empty(self) -> bool:
        return all(value is None for value in vars(self).values())


def round_currency(value: float) -> float:
    """Round half-up to whole cents."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_commission(order_total: float, commission_type: str, commission_rate: float) -> float:
    """
    Commission for an order.

    Percentage commissions are ``order_total * rate / 100``; flat and tiered
    commissions pay the rate itself per order.
    """
    if commission_type == CommissionType.PERCENTAGE.value:
        return round_currency(order_total * commission_rate / 100)
    return round_currency(commission_rate)


def code_prefix(name: str) -> str:
    """Upper-case alphanumerics of a name, truncated to the code prefix length."""
    return re.sub(r"[^A-Z0-9]", "", (name or "").upper())[:CODE_PREFIX_LENGTH]


def generate_affiliate_code(name: str, existing_codes) -> str:
    """
    Build a unique affiliate code from a display name.

    Tries the prefix with two random digits, then up to 100 attempts with
    three digits; falls back to a random hex suffix if all collide.
    """
    prefix = code_prefix(name) or "AFF"
    taken = {c.upper() for c in existing_codes}

    code = f"{prefix}{random.randint(0, 99):02d}"
    attempts = 0
    while code in taken and attempts < CODE_RETRY_ATTEMPTS:
        code = f"{prefix}{random.randint(0, 999):03d}"
        attempts += 1

    if code in taken:
        code = f"{prefix}{secrets.token_hex(3).upper()}"
    return code


class AffiliateService:
    """
    Affiliate program operations bound to a database session.

    Every mutating method commits on success and rolls back on failure.
    """

    def __init__(self, db_session: Session):
        self.db = db_session
        self.metrics = get_metrics()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> AffiliateSettings:
        """Return the program settings, creating the default row on first use."""
        settings = self.db.get(AffiliateSettings, SETTINGS_ID)
        if settings is None:
            settings = AffiliateSettings(id=SETTINGS_ID)
            self.db.add(settings)
            self.db.commit()
            self.db.refresh(settings)
            logger.info("Created default affiliate program settings")
        return settings

    def update_settings(self, changes: Dict[str, Any]) -> AffiliateSettings:
        """Apply a partial settings update; unknown keys are rejected."""
        settings = self.get_settings()
        allowed = {
            "program_enabled", "auto_approve_affiliates", "default_commission_type",
            "default_commission_rate", "cookie_duration_days", "minimum_payout_threshold",
            "payout_schedule", "commission_hold_days", "require_website",
            "require_traffic_info", "terms_text",
        }

        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        if "default_commission_type" in changes:
            self._check_choice("default_commission_type", changes["default_commission_type"], CommissionType)
        if "payout_schedule" in changes:
            self._check_choice("payout_schedule", changes["payout_schedule"], PayoutSchedule)
        for key in ("default_commission_rate", "minimum_payout_threshold",
                    "cookie_duration_days", "commission_hold_days"):
            if key in changes and changes[key] is not None and changes[key] < 0:
                raise ValidationError(f"{key} cannot be negative", field=key, value=changes[key])

        for key, value in changes.items():
            if value is None:
                continue
            if key == "terms_text":
                value = sanitize_input(value, max_length=20000)
            setattr(settings, key, value)

        self.db.commit()
        self.db.refresh(settings)
        logger.info(f"Affiliate settings updated: {sorted(changes)}")
        return settings

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def submit_application(
        self,
        user_id: str,
        data: ApplicationInput,
        applicant_name: Optional[str] = None,
        applicant_email: Optional[str] = None,
    ) -> AffiliateApplication:
        """
        Store a new application for a user.

        Raises:
            ConflictError: If the user has a pending application or already
                is an affiliate
        """
        pending = (
            self.db.query(AffiliateApplication)
            .filter(
                AffiliateApplication.user_id == user_id,
                AffiliateApplication.status == ApplicationStatus.PENDING.value,
            )
            .first()
        )
        if pending:
            raise ConflictError("You already have a pending application")

        if self.get_affiliate_by_user(user_id):
            raise ConflictError("You are already an affiliate")

        application = AffiliateApplication(
            user_id=user_id,
            applicant_name=sanitize_optional(applicant_name),
            applicant_email=applicant_email,
            company_name=sanitize_optional(data.company_name),
            website=sanitize_input(data.website),
            promotional_methods=sanitize_list(data.promotional_methods),
            audience_size=sanitize_optional(data.audience_size),
            promotion_plan=sanitize_input(data.promotion_plan, max_length=5000),
            social_media_links=sanitize_list(data.social_media_links) if data.social_media_links else None,
            monthly_traffic=sanitize_optional(data.monthly_traffic),
            paypal_email=data.paypal_email,
            preferred_payout_method=data.preferred_payout_method or PayoutMethod.PAYPAL.value,
            status=ApplicationStatus.PENDING.value,
        )
        self.db.add(application)
        self.db.commit()
        self.db.refresh(application)
        logger.info(f"Affiliate application {application.id} submitted by user {user_id}")

        if self.get_settings().auto_approve_affiliates:
            self.approve_application(application.id, admin_user_id="system")
            self.db.refresh(application)

        return application

    def get_application(self, application_id: str) -> Optional[AffiliateApplication]:
        return self.db.get(AffiliateApplication, application_id)

    def list_pending_applications(self) -> List[AffiliateApplication]:
        return (
            self.db.query(AffiliateApplication)
            .filter(AffiliateApplication.status == ApplicationStatus.PENDING.value)
            .order_by(AffiliateApplication.created_at.desc())
            .all()
        )

    def approve_application(
        self,
        application_id: str,
        admin_user_id: str,
        commission_rate: Optional[float] = None,
    ) -> Affiliate:
        """
        Approve a pending application and create an active affiliate.

        Args:
            application_id: Application to approve
            admin_user_id: Reviewer id (``system`` for auto-approval)
            commission_rate: Custom rate; the program default when None

        Returns:
            The new affiliate
        """
        application = self._require_application(application_id)
        if application.status != ApplicationStatus.PENDING.value:
            raise ValidationError("Application is not pending", field="status", value=application.status)
        if commission_rate is not None and commission_rate < 0:
            raise ValidationError("Commission rate cannot be negative", field="commission_rate", value=commission_rate)

        settings = self.get_settings()
        now = utcnow()

        existing_codes = [code for (code,) in self.db.query(Affiliate.affiliate_code).all()]
        code = generate_affiliate_code(
            application.applicant_name or application.applicant_email or application.user_id,
            existing_codes,
        )

        affiliate = Affiliate(
            user_id=application.user_id,
            affiliate_code=code,
            company_name=application.company_name,
            website=application.website,
            promotional_methods=list(application.promotional_methods or []),
            audience_size=application.audience_size,
            commission_type=settings.default_commission_type,
            commission_rate=commission_rate if commission_rate is not None else settings.default_commission_rate,
            status=AffiliateStatus.ACTIVE.value,
            approved_by=admin_user_id,
            approved_at=now,
            paypal_email=application.paypal_email,
            preferred_payout_method=application.preferred_payout_method or PayoutMethod.PAYPAL.value,
            minimum_payout_threshold=settings.minimum_payout_threshold,
        )

        application.status = ApplicationStatus.APPROVED.value
        application.reviewed_by = admin_user_id
        application.reviewed_at = now

        try:
            self.db.add(affiliate)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Failed to approve application {application_id}: {e}")
            raise ConflictError("Affiliate could not be created", {"application_id": application_id})

        self.db.refresh(affiliate)
        logger.info(f"Application {application_id} approved by {admin_user_id}: affiliate {affiliate.affiliate_code}")
        return affiliate

    def reject_application(self, application_id: str, admin_user_id: str, reason: str) -> AffiliateApplication:
        application = self._require_application(application_id)
        if application.status != ApplicationStatus.PENDING.value:
            raise ValidationError("Application is not pending", field="status", value=application.status)

        application.status = ApplicationStatus.REJECTED.value
        application.reviewed_by = admin_user_id
        application.reviewed_at = utcnow()
        application.rejection_reason = sanitize_input(reason)
        self.db.commit()
        self.db.refresh(application)

        logger.info(f"Application {application_id} rejected by {admin_user_id}")
        return application

    # ------------------------------------------------------------------
    # Affiliates
    # ------------------------------------------------------------------

    def get_affiliate(self, affiliate_id: str) -> Optional[Affiliate]:
        return self.db.get(Affiliate, affiliate_id)

    def get_affiliate_by_user(self, user_id: str) -> Optional[Affiliate]:
        return self.db.query(Affiliate).filter(Affiliate.user_id == user_id).first()

    def get_affiliate_by_code(self, code: str) -> Optional[Affiliate]:
        """Case-insensitive lookup by affiliate code."""
        if not code:
            return None
        return (
            self.db.query(Affiliate)
            .filter(func.upper(Affiliate.affiliate_code) == code.strip().upper())
            .first()
        )

    def list_affiliates(self) -> List[Affiliate]:
        return self.db.query(Affiliate).order_by(Affiliate.created_at.desc()).all()

    def update_affiliate(self, affiliate_id: str, changes: AffiliateChanges) -> Affiliate:
        """Apply a partial update; bank details are stored encrypted."""
        affiliate = self._require_affiliate(affiliate_id)
        if changes.is_empty():
            return affiliate

        if changes.commission_type is not None:
            self._check_choice("commission_type", changes.commission_type, CommissionType)
            affiliate.commission_type = changes.commission_type
        if changes.commission_rate is not None:
            if changes.commission_rate < 0:
                raise ValidationError("Commission rate cannot be negative", field="commission_rate")
            affiliate.commission_rate = changes.commission_rate
        if changes.status is not None:
            self._check_choice("status", changes.status, AffiliateStatus)
            affiliate.status = changes.status
        if changes.preferred_payout_method is not None:
            self._check_choice("preferred_payout_method", changes.preferred_payout_method, PayoutMethod)
            affiliate.preferred_payout_method = changes.preferred_payout_method
        if changes.minimum_payout_threshold is not None:
            if changes.minimum_payout_threshold < 0:
                raise ValidationError("Payout threshold cannot be negative", field="minimum_payout_threshold")
            affiliate.minimum_payout_threshold = changes.minimum_payout_threshold

        if changes.company_name is not None:
            affiliate.company_name = sanitize_optional(changes.company_name)
        if changes.website is not None:
            affiliate.website = sanitize_optional(changes.website)
        if changes.promotional_methods is not None:
            affiliate.promotional_methods = sanitize_list(changes.promotional_methods)
        if changes.audience_size is not None:
            affiliate.audience_size = sanitize_optional(changes.audience_size)
        if changes.paypal_email is not None:
            affiliate.paypal_email = changes.paypal_email.strip() or None
        if changes.bank_account_info is not None:
            info = sanitize_input(changes.bank_account_info)
            affiliate.bank_account_info = get_encryptor().encrypt(info) if info else None

        self.db.commit()
        self.db.refresh(affiliate)
        logger.info(f"Affiliate {affiliate_id} updated")
        return affiliate

    def get_bank_account_info(self, affiliate: Affiliate) -> Optional[str]:
        """Decrypted bank account details, for payout processing."""
        if not affiliate.bank_account_info:
            return None
        return get_encryptor().decrypt(affiliate.bank_account_info)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_click(self, data: ClickInput) -> AffiliateClick:
        """
        Record a referral click for an active affiliate.

        The returned click carries the session token the storefront stores
        in the visitor's cookie for later attribution.
        """
        affiliate = self._require_active_affiliate(data.affiliate_code)

        click = AffiliateClick(
            affiliate_id=affiliate.id,
            affiliate_code=affiliate.affiliate_code,
            ip_address=data.ip_address,
            user_agent=data.user_agent,
            referrer_url=data.referrer_url,
            landing_page=data.landing_page,
            session_token=f"sess_{secrets.token_hex(16)}",
            converted=False,
        )
        self.db.add(click)
        affiliate.total_clicks = (affiliate.total_clicks or 0) + 1
        self.db.commit()
        self.db.refresh(click)

        self.metrics.track_affiliate_click()
        logger.debug(f"Click {click.id} tracked for affiliate {affiliate.affiliate_code}")
        return click

    def record_conversion(self, data: ConversionInput) -> AffiliateConversion:
        """
        Record a commissionable order for an active affiliate.

        Raises:
            ValidationError: Unknown or inactive affiliate, negative total
            ConflictError: A conversion already exists for the order
        """
        affiliate = self._require_active_affiliate(data.affiliate_code)

        if data.order_total is None or data.order_total < 0:
            raise ValidationError("Order total must be zero or positive", field="order_total", value=data.order_total)

        existing = (
            self.db.query(AffiliateConversion)
            .filter(AffiliateConversion.order_id == data.order_id)
            .first()
        )
        if existing:
            raise ConflictError("Conversion already recorded for this order", {"order_id": data.order_id})

        converted_at = data.converted_at or utcnow()
        commission = calculate_commission(data.order_total, affiliate.commission_type, affiliate.commission_rate)

        click = None
        if data.session_token:
            click = self._find_attributable_click(affiliate.id, data.session_token, converted_at)

        conversion = AffiliateConversion(
            affiliate_id=affiliate.id,
            affiliate_code=affiliate.affiliate_code,
            click_id=click.id if click else None,
            order_id=data.order_id,
            customer_id=data.customer_id,
            order_total=round_currency(data.order_total),
            commission_rate=affiliate.commission_rate,
            commission_amount=commission,
            commission_status=CommissionStatus.PENDING.value,
            converted_at=converted_at,
        )
        self.db.add(conversion)

        if click:
            click.converted = True
            click.order_id = data.order_id

        affiliate.total_conversions = (affiliate.total_conversions or 0) + 1
        affiliate.total_revenue = round_currency((affiliate.total_revenue or 0) + data.order_total)
        affiliate.total_commission_earned = round_currency((affiliate.total_commission_earned or 0) + commission)

        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent request recorded the same order first
            self.db.rollback()
            raise ConflictError("Conversion already recorded for this order", {"order_id": data.order_id})

        self.db.refresh(conversion)
        self.metrics.track_affiliate_conversion(commission, attributed=click is not None)
        logger.info(
            f"Conversion {conversion.id} for order {data.order_id}: "
            f"affiliate {affiliate.affiliate_code}, commission {commission:.2f}"
        )
        return conversion

    def cancel_conversion(self, conversion_id: str) -> AffiliateConversion:
        """Cancel a pending or approved conversion and reverse its totals."""
        conversion = self.db.get(AffiliateConversion, conversion_id)
        if conversion is None:
            raise NotFoundError("Conversion not found", resource="conversion", resource_id=conversion_id)
        if conversion.commission_status not in (CommissionStatus.PENDING.value, CommissionStatus.APPROVED.value):
            raise ValidationError(
                "Only pending or approved conversions can be cancelled",
                field="commission_status",
                value=conversion.commission_status,
            )
        if conversion.payout_id:
            raise ValidationError("Conversion is part of a payout", field="payout_id", value=conversion.payout_id)

        affiliate = self._require_affiliate(conversion.affiliate_id)
        conversion.commission_status = CommissionStatus.CANCELLED.value
        conversion.cancelled_at = utcnow()

        affiliate.total_conversions = max((affiliate.total_conversions or 0) - 1, 0)
        affiliate.total_revenue = max(round_currency(affiliate.total_revenue - conversion.order_total), 0.0)
        affiliate.total_commission_earned = max(
            round_currency(affiliate.total_commission_earned - conversion.commission_amount), 0.0
        )

        self.db.commit()
        self.db.refresh(conversion)
        logger.info(f"Conversion {conversion_id} cancelled")
        return conversion

    def approve_pending_commissions(self, now: Optional[datetime] = None) -> int:
        """
        Approve pending commissions older than the hold period.

        Returns:
            Number of conversions approved
        """
        now = now or utcnow()
        settings = self.get_settings()
        cutoff = now - timedelta(days=settings.commission_hold_days)

        count = (
            self.db.query(AffiliateConversion)
            .filter(
                AffiliateConversion.commission_status == CommissionStatus.PENDING.value,
                AffiliateConversion.converted_at <= cutoff,
            )
            .update(
                {
                    AffiliateConversion.commission_status: CommissionStatus.APPROVED.value,
                    AffiliateConversion.approved_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        logger.info(f"Approved {count} pending commission(s) older than {settings.commission_hold_days} days")
        return count

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def create_payout(
        self,
        affiliate_id: str,
        processed_by: str,
        method: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> AffiliatePayout:
        """
        Bundle all approved, unpaid conversions of an affiliate into a payout.

        Raises:
            ValidationError: Nothing approved, or total below the affiliate's
                minimum payout threshold
        """
        affiliate = self._require_affiliate(affiliate_id)
        if method is not None:
            self._check_choice("payout_method", method, PayoutMethod)

        conversions = (
            self.db.query(AffiliateConversion)
            .filter(
                AffiliateConversion.affiliate_id == affiliate_id,
                AffiliateConversion.commission_status == CommissionStatus.APPROVED.value,
                AffiliateConversion.payout_id.is_(None),
            )
            .order_by(AffiliateConversion.converted_at)
            .all()
        )
        if not conversions:
            raise ValidationError("No approved commissions available for payout")

        amount = round_currency(sum(c.commission_amount for c in conversions))
        if amount < affiliate.minimum_payout_threshold:
            raise ValidationError(
                f"Payout amount {amount:.2f} is below the minimum threshold "
                f"{affiliate.minimum_payout_threshold:.2f}",
                field="amount",
                value=amount,
            )

        payout = AffiliatePayout(
            affiliate_id=affiliate_id,
            amount=amount,
            payout_method=method or affiliate.preferred_payout_method,
            payout_status=PayoutStatus.PENDING.value,
            payout_notes=sanitize_optional(notes),
            conversion_ids=[c.id for c in conversions],
            from_date=conversions[0].converted_at,
            to_date=conversions[-1].converted_at,
            processed_by=processed_by,
        )
        self.db.add(payout)
        self.db.flush()

        for conversion in conversions:
            conversion.payout_id = payout.id

        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Payout {payout.id} created for affiliate {affiliate_id}: {amount:.2f} ({len(conversions)} conversions)")
        return payout

    def get_payout(self, payout_id: str) -> Optional[AffiliatePayout]:
        return self.db.get(AffiliatePayout, payout_id)

    def list_payouts(self, affiliate_id: Optional[str] = None, status: Optional[str] = None) -> List[AffiliatePayout]:
        query = self.db.query(AffiliatePayout)
        if affiliate_id:
            query = query.filter(AffiliatePayout.affiliate_id == affiliate_id)
        if status:
            self._check_choice("status", status, PayoutStatus)
            query = query.filter(AffiliatePayout.payout_status == status)
        return query.order_by(AffiliatePayout.created_at.desc()).all()

    def mark_payout_paid(
        self,
        payout_id: str,
        processed_by: str,
        transaction_id: Optional[str] = None,
    ) -> AffiliatePayout:
        """Settle a payout: its conversions become paid and the affiliate's paid total grows."""
        payout = self._require_open_payout(payout_id)
        affiliate = self._require_affiliate(payout.affiliate_id)
        now = utcnow()

        conversions = self._payout_conversions(payout)
        for conversion in conversions:
            conversion.commission_status = CommissionStatus.PAID.value
            conversion.paid_at = now

        payout.payout_status = PayoutStatus.PAID.value
        payout.transaction_id = sanitize_optional(transaction_id)
        payout.payout_date = now
        payout.processed_by = processed_by
        payout.processed_at = now

        affiliate.total_commission_paid = round_currency((affiliate.total_commission_paid or 0) + payout.amount)

        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Payout {payout_id} marked paid by {processed_by}")
        return payout

    def mark_payout_failed(
        self,
        payout_id: str,
        processed_by: str,
        notes: Optional[str] = None,
    ) -> AffiliatePayout:
        """Fail a payout and release its conversions for a later payout."""
        payout = self._require_open_payout(payout_id)

        for conversion in self._payout_conversions(payout):
            conversion.payout_id = None

        payout.payout_status = PayoutStatus.FAILED.value
        payout.processed_by = processed_by
        payout.processed_at = utcnow()
        if notes:
            payout.payout_notes = sanitize_input(notes)

        self.db.commit()
        self.db.refresh(payout)
        logger.warning(f"Payout {payout_id} marked failed by {processed_by}")
        return payout

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_affiliate_stats(
        self,
        affiliate_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Performance of one affiliate over a window (default last 30 days)."""
        affiliate = self._require_affiliate(affiliate_id)
        end = end or utcnow()
        start = start or end - timedelta(days=STATS_WINDOW_DAYS)

        total_clicks, unique_clicks = (
            self.db.query(func.count(AffiliateClick.id), func.count(distinct(AffiliateClick.session_token)))
            .filter(
                AffiliateClick.affiliate_id == affiliate_id,
                AffiliateClick.clicked_at >= start,
                AffiliateClick.clicked_at <= end,
            )
            .one()
        )

        conversions = (
            self.db.query(AffiliateConversion)
            .filter(
                AffiliateConversion.affiliate_id == affiliate_id,
                AffiliateConversion.converted_at >= start,
                AffiliateConversion.converted_at <= end,
            )
            .all()
        )
        by_status = self._commission_by_status(conversions)
        total_conversions = len(conversions)
        total_revenue = round_currency(sum(c.order_total for c in conversions))

        recent = (
            self.db.query(AffiliateConversion)
            .filter(AffiliateConversion.affiliate_id == affiliate_id)
            .order_by(AffiliateConversion.converted_at.desc())
            .limit(RECENT_CONVERSIONS_LIMIT)
            .all()
        )

        return {
            "affiliate_id": affiliate_id,
            "affiliate_code": affiliate.affiliate_code,
            "total_clicks": total_clicks or 0,
            "unique_clicks": unique_clicks or 0,
            "total_conversions": total_conversions,
            "conversion_rate": (total_conversions / total_clicks * 100) if total_clicks else 0.0,
            "total_revenue": total_revenue,
            "average_order_value": round_currency(total_revenue / total_conversions) if total_conversions else 0.0,
            "total_commission": round_currency(sum(c.commission_amount for c in conversions)),
            "pending_commission": by_status[CommissionStatus.PENDING.value],
            "approved_commission": by_status[CommissionStatus.APPROVED.value],
            "paid_commission": by_status[CommissionStatus.PAID.value],
            "next_payout_amount": by_status[CommissionStatus.APPROVED.value],
            "period_start": start,
            "period_end": end,
            "recent_conversions": [
                {
                    "order_id": c.order_id,
                    "order_total": c.order_total,
                    "commission_amount": c.commission_amount,
                    "commission_status": c.commission_status,
                    "converted_at": c.converted_at,
                }
                for c in recent
            ],
        }

    def get_admin_overview(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Program-wide dashboard figures."""
        now = now or utcnow()
        since = now - timedelta(days=STATS_WINDOW_DAYS)

        status_counts = dict(
            self.db.query(Affiliate.status, func.count(Affiliate.id)).group_by(Affiliate.status).all()
        )
        pending_applications = (
            self.db.query(func.count(AffiliateApplication.id))
            .filter(AffiliateApplication.status == ApplicationStatus.PENDING.value)
            .scalar()
        )

        clicks_30d = (
            self.db.query(func.count(AffiliateClick.id)).filter(AffiliateClick.clicked_at >= since).scalar() or 0
        )
        conversions_30d, revenue_30d = (
            self.db.query(func.count(AffiliateConversion.id), func.sum(AffiliateConversion.order_total))
            .filter(AffiliateConversion.converted_at >= since)
            .one()
        )

        commission_rows = (
            self.db.query(AffiliateConversion.commission_status, func.sum(AffiliateConversion.commission_amount))
            .group_by(AffiliateConversion.commission_status)
            .all()
        )
        commission = {status: round_currency(total or 0) for status, total in commission_rows}

        payout_count, payout_amount = (
            self.db.query(func.count(AffiliatePayout.id), func.sum(AffiliatePayout.amount))
            .filter(AffiliatePayout.payout_status.in_([PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value]))
            .one()
        )

        revenue = func.coalesce(func.sum(AffiliateConversion.order_total), 0)
        top_rows = (
            self.db.query(
                Affiliate.id,
                Affiliate.affiliate_code,
                Affiliate.company_name,
                func.count(AffiliateConversion.id),
                revenue,
                func.coalesce(func.sum(AffiliateConversion.commission_amount), 0),
            )
            .outerjoin(
                AffiliateConversion,
                (AffiliateConversion.affiliate_id == Affiliate.id) & (AffiliateConversion.converted_at >= since),
            )
            .filter(Affiliate.status == AffiliateStatus.ACTIVE.value)
            .group_by(Affiliate.id, Affiliate.affiliate_code, Affiliate.company_name)
            .order_by(revenue.desc())
            .limit(TOP_AFFILIATES_LIMIT)
            .all()
        )

        recent_applications = (
            self.db.query(AffiliateApplication)
            .filter(AffiliateApplication.status == ApplicationStatus.PENDING.value)
            .order_by(AffiliateApplication.created_at.desc())
            .limit(RECENT_APPLICATIONS_LIMIT)
            .all()
        )

        return {
            "total_affiliates": sum(status_counts.values()),
            "active_affiliates": status_counts.get(AffiliateStatus.ACTIVE.value, 0),
            "suspended_affiliates": status_counts.get(AffiliateStatus.SUSPENDED.value, 0),
            "pending_applications": pending_applications or 0,
            "total_clicks_30d": clicks_30d,
            "total_conversions_30d": conversions_30d or 0,
            "total_revenue_30d": round_currency(revenue_30d or 0),
            "average_conversion_rate": (conversions_30d / clicks_30d * 100) if clicks_30d else 0.0,
            "total_commission_pending": commission.get(CommissionStatus.PENDING.value, 0.0),
            "total_commission_approved": commission.get(CommissionStatus.APPROVED.value, 0.0),
            "total_commission_paid": commission.get(CommissionStatus.PAID.value, 0.0),
            "pending_payouts_count": payout_count or 0,
            "pending_payouts_amount": round_currency(payout_amount or 0),
            "top_affiliates": [
                {
                    "affiliate_id": aff_id,
                    "affiliate_code": code,
                    "affiliate_name": company or code,
                    "conversions": conversions or 0,
                    "revenue": round_currency(rev or 0),
                    "commission": round_currency(comm or 0),
                }
                for aff_id, code, company, conversions, rev, comm in top_rows
            ],
            "recent_applications": [
                {
                    "id": app.id,
                    "user_id": app.user_id,
                    "user_name": app.applicant_name or "Unknown",
                    "user_email": app.applicant_email or "Unknown",
                    "website": app.website,
                    "created_at": app.created_at,
                }
                for app in recent_applications
            ],
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_attributable_click(self, affiliate_id: str, session_token: str,
                                 converted_at: datetime) -> Optional[AffiliateClick]:
        """Most recent unconverted click with the token inside the cookie window."""
        window_start = converted_at - timedelta(days=self.get_settings().cookie_duration_days)
        return (
            self.db.query(AffiliateClick)
            .filter(
                AffiliateClick.affiliate_id == affiliate_id,
                AffiliateClick.session_token == session_token,
                AffiliateClick.converted.is_(False),
                AffiliateClick.clicked_at >= window_start,
                AffiliateClick.clicked_at <= converted_at,
            )
            .order_by(AffiliateClick.clicked_at.desc())
            .first()
        )

    def _payout_conversions(self, payout: AffiliatePayout) -> List[AffiliateConversion]:
        return (
            self.db.query(AffiliateConversion)
            .filter(AffiliateConversion.id.in_(payout.conversion_ids or []))
            .all()
        )

    @staticmethod
    def _commission_by_status(conversions) -> Dict[str, float]:
        totals = {status.value: 0.0 for status in CommissionStatus}
        for conversion in conversions:
            totals[conversion.commission_status] += conversion.commission_amount
        return {status: round_currency(total) for status, total in totals.items()}

    @staticmethod
    def _check_choice(field_name: str, value: str, choices) -> None:
        allowed = [c.value for c in choices]
        if value not in allowed:
            raise ValidationError(
                f"Invalid {field_name}: {value}",
                field=field_name,
                value=value,
                expected_type=" | ".join(allowed),
            )

    def _require_application(self, application_id: str) -> AffiliateApplication:
        application = self.get_application(application_id)
        if application is None:
            raise NotFoundError("Application not found", resource="application", resource_id=application_id)
        return application

    def _require_affiliate(self, affiliate_id: str) -> Affiliate:
        affiliate = self.get_affiliate(affiliate_id)
        if affiliate is None:
            raise NotFoundError("Affiliate not found", resource="affiliate", resource_id=affiliate_id)
        return affiliate

    def _require_active_affiliate(self, code: str) -> Affiliate:
        affiliate = self.get_affiliate_by_code(code)
        if affiliate is None or affiliate.status != AffiliateStatus.ACTIVE.value:
            raise ValidationError("Invalid or inactive affiliate code", field="affiliate_code", value=code)
        return affiliate

    def _require_open_payout(self, payout_id: str) -> AffiliatePayout:
        payout = self.get_payout(payout_id)
        if payout is None:
            raise NotFoundError("Payout not found", resource="payout", resource_id=payout_id)
        if payout.payout_status not in (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value):
            raise ValidationError("Payout is already settled", field="payout_status", value=payout.payout_status)
        return payout
