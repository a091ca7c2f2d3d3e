"""Coupon template management, issuance and redemption."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.core.clock import end_of_day, ensure_aware, utcnow
from buzz_api.core.errors import (
    Conflict,
    CouponExhausted,
    CouponExpired,
    CouponNotActive,
    CouponNotApplicable,
    CouponOutsideValidity,
    MinPurchaseNotMet,
    NotFound,
    ValidationFailed,
)
from buzz_api.core.settings import settings
from buzz_api.models.business import Business, BusinessStatus
from buzz_api.models.coupon import (
    CouponKind,
    CouponTemplate,
    CouponTemplateStatus,
    CouponUsageLog,
    DiscountType,
    UserCoupon,
    UserCouponStatus,
)
from buzz_api.observability.ledger import LedgerObservabilityStore, get_ledger_store
from buzz_api.services.qr_tokens import KIND_COUPON, issue_coupon_token, verify_token

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def compute_discount(
    discount_type: DiscountType,
    discount_value: Any,
    purchase_amount: Any,
    max_discount_amount: Any | None = None,
) -> Decimal:
    """Discount for a purchase, never above ``max_discount_amount`` or the purchase itself."""

    purchase = Decimal(str(purchase_amount))
    value = Decimal(str(discount_value))
    if discount_type is DiscountType.PERCENTAGE:
        discount = purchase * value / HUNDRED
    else:
        discount = value

    if max_discount_amount is not None:
        discount = min(discount, Decimal(str(max_discount_amount)))
    discount = min(discount, purchase)
    return max(discount, ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class CouponRedemption:
    coupon: UserCoupon
    template: CouponTemplate
    business: Business
    purchase_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


@dataclass(slots=True)
class BulkIssueResult:
    issued: list[UserCoupon]
    skipped_count: int
    total_targeted: int
    expires_at: datetime | None

    @property
    def issued_count(self) -> int:
        return len(self.issued)


class CouponService:
    """Coupon lifecycle: templates, issuance, redemption and expiry."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        observability: LedgerObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_ledger_store()

    # Templates

    async def create_template(
        self,
        *,
        name: str,
        discount_type: DiscountType,
        discount_value: Any,
        valid_from: date,
        valid_until: date,
        kind: CouponKind = CouponKind.BASIC,
        description: str | None = None,
        min_purchase_amount: Any = 0,
        max_discount_amount: Any | None = None,
        total_quantity: int | None = None,
        applicable_businesses: Iterable[UUID] | None = None,
        created_by: UUID | None = None,
    ) -> CouponTemplate:
        value = Decimal(str(discount_value))
        if value <= ZERO:
            raise ValidationFailed("Discount value must be greater than zero")
        if discount_type is DiscountType.PERCENTAGE and value > HUNDRED:
            raise ValidationFailed("Percentage discount cannot exceed 100")
        if valid_until < valid_from:
            raise ValidationFailed("validUntil must not be before validFrom")
        if total_quantity is not None and total_quantity <= 0:
            raise ValidationFailed("totalQuantity must be greater than zero")

        template = CouponTemplate(
            name=name,
            description=description,
            kind=kind,
            discount_type=discount_type,
            discount_value=value,
            min_purchase_amount=Decimal(str(min_purchase_amount or 0)),
            max_discount_amount=Decimal(str(max_discount_amount)) if max_discount_amount is not None else None,
            valid_from=valid_from,
            valid_until=valid_until,
            total_quantity=total_quantity,
            used_quantity=0,
            issued_quantity=0,
            applicable_businesses=[str(item) for item in applicable_businesses or []],
            status=CouponTemplateStatus.ACTIVE,
            created_by=created_by,
        )
        self._db.add(template)
        await self._db.flush()
        logger.info("Created coupon template", template_id=str(template.id), name=name)
        return template

    async def list_templates(
        self,
        *,
        status: CouponTemplateStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[CouponTemplate], int]:
        filters = [CouponTemplate.status == status] if status is not None else []
        total = (await self._db.execute(select(func.count(CouponTemplate.id)).where(*filters))).scalar_one()
        stmt = (
            select(CouponTemplate)
            .where(*filters)
            .order_by(CouponTemplate.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return (await self._db.execute(stmt)).scalars().all(), int(total or 0)

    async def set_template_status(self, template_id: UUID, status: CouponTemplateStatus) -> CouponTemplate:
        template = await self._get_template(template_id)
        template.status = status
        await self._db.flush()
        return template

    # Issuance

    async def issue(
        self,
        user_id: UUID,
        template_id: UUID,
        *,
        expiration_days: int | None = None,
        now: datetime | None = None,
    ) -> UserCoupon:
        current = now or utcnow()
        template = await self._get_issuable_template(template_id, current)
        self._ensure_quantity(template, needed=1)

        coupon = self._build_coupon(user_id, template, self._expiry_for(template, current, expiration_days), current)
        template.issued_quantity = int(template.issued_quantity or 0) + 1
        await self._db.flush()

        self._observability.record_coupon_event("issued")
        logger.info(
            "Issued coupon",
            user_id=str(user_id),
            template_id=str(template.id),
            coupon_id=str(coupon.id),
        )
        return coupon

    async def claim(self, user_id: UUID, template_id: UUID, *, now: datetime | None = None) -> UserCoupon:
        """Self-service issuance; each user may hold a template once."""

        if await self._holds_template(user_id, template_id):
            raise Conflict("Coupon already claimed")
        return await self.issue(user_id, template_id, now=now)

    async def issue_bulk(
        self,
        template_id: UUID,
        user_ids: Sequence[UUID],
        *,
        expiration_days: int | None = None,
        now: datetime | None = None,
    ) -> BulkIssueResult:
        """Issue to many users, skipping those who already hold the template."""

        current = now or utcnow()
        template = await self._get_issuable_template(template_id, current)

        targets = list(dict.fromkeys(user_ids))
        holders_stmt = select(UserCoupon.user_id).where(
            UserCoupon.template_id == template.id,
            UserCoupon.user_id.in_(targets),
        )
        holders = set((await self._db.execute(holders_stmt)).scalars().all())
        recipients = [user_id for user_id in targets if user_id not in holders]
        if not recipients:
            raise Conflict("All targeted users already hold this coupon")
        self._ensure_quantity(template, needed=len(recipients))

        expires_at = self._expiry_for(template, current, expiration_days)
        issued = [self._build_coupon(user_id, template, expires_at, current) for user_id in recipients]
        template.issued_quantity = int(template.issued_quantity or 0) + len(issued)
        await self._db.flush()

        for _ in issued:
            self._observability.record_coupon_event("issued")
        logger.info(
            "Bulk issued coupons",
            template_id=str(template.id),
            issued=len(issued),
            skipped=len(targets) - len(recipients),
        )
        return BulkIssueResult(
            issued=issued,
            skipped_count=len(targets) - len(recipients),
            total_targeted=len(targets),
            expires_at=expires_at,
        )

    # Redemption

    async def redeem(
        self,
        user_id: UUID,
        *,
        qr_code: str,
        business_id: UUID,
        purchase_amount: Any,
        now: datetime | None = None,
    ) -> CouponRedemption:
        """Redeem a held coupon at a business.

        An active coupon found past its expiry is moved to ``expired`` and the
        session is committed before :class:`CouponExpired` is raised, so the
        status change survives the request rollback. This is the one place a
        service commits; anything else pending on the session is committed too.
        """

        current = now or utcnow()
        purchase = Decimal(str(purchase_amount)).quantize(CENT, rounding=ROUND_HALF_UP)
        if purchase <= ZERO:
            raise ValidationFailed("Purchase amount must be greater than zero")

        claims = verify_token(qr_code, kind=KIND_COUPON, now=current)
        stmt = (
            select(UserCoupon)
            .where(
                UserCoupon.id == claims.subject,
                UserCoupon.qr_code_data == qr_code,
                UserCoupon.user_id == user_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        coupon = (await self._db.execute(stmt)).scalar_one_or_none()
        if coupon is None:
            raise NotFound("Coupon")
        if coupon.status is not UserCouponStatus.ACTIVE:
            self._observability.record_rejection(CouponNotActive.code)
            raise CouponNotActive()
        if ensure_aware(coupon.expires_at) <= current:
            coupon.status = UserCouponStatus.EXPIRED
            await self._db.commit()
            self._observability.record_coupon_event("expired")
            self._observability.record_rejection(CouponExpired.code)
            raise CouponExpired()

        business = (
            await self._db.execute(
                select(Business).where(Business.id == business_id, Business.status == BusinessStatus.APPROVED)
            )
        ).scalar_one_or_none()
        if business is None:
            raise NotFound("Business")

        template = await self._get_template(coupon.template_id, for_update=True)
        applicable = template.applicable_businesses or []
        if applicable and str(business.id) not in {str(item) for item in applicable}:
            self._observability.record_rejection(CouponNotApplicable.code)
            raise CouponNotApplicable()

        minimum = Decimal(str(template.min_purchase_amount or 0))
        if purchase < minimum:
            self._observability.record_rejection(MinPurchaseNotMet.code)
            raise MinPurchaseNotMet(minimum=minimum)
        if template.total_quantity is not None and int(template.used_quantity or 0) >= int(template.total_quantity):
            raise CouponExhausted()

        discount = compute_discount(
            template.discount_type,
            template.discount_value,
            purchase,
            template.max_discount_amount,
        )

        coupon.status = UserCouponStatus.USED
        coupon.used_at = current
        coupon.used_business_id = business.id
        coupon.used_amount = discount
        template.used_quantity = int(template.used_quantity or 0) + 1
        business.qr_scan_count = Business.qr_scan_count + 1
        self._db.add(
            CouponUsageLog(
                user_coupon_id=coupon.id,
                user_id=user_id,
                business_id=business.id,
                purchase_amount=purchase,
                discount_amount=discount,
                used_at=current,
            )
        )
        await self._db.flush()
        await self._db.refresh(business, attribute_names=["qr_scan_count"])

        self._observability.record_coupon_event("redeemed")
        logger.info(
            "Redeemed coupon",
            coupon_id=str(coupon.id),
            business_id=str(business.id),
            discount=str(discount),
        )
        return CouponRedemption(
            coupon=coupon,
            template=template,
            business=business,
            purchase_amount=purchase,
            discount_amount=discount,
            final_amount=purchase - discount,
        )

    # Queries

    async def list_user_coupons(
        self,
        user_id: UUID,
        *,
        status: UserCouponStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[UserCoupon], int]:
        filters = [UserCoupon.user_id == user_id]
        if status is not None:
            filters.append(UserCoupon.status == status)
        total = (await self._db.execute(select(func.count(UserCoupon.id)).where(*filters))).scalar_one()
        stmt = (
            select(UserCoupon)
            .where(*filters)
            .order_by(UserCoupon.issued_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return (await self._db.execute(stmt)).scalars().all(), int(total or 0)

    async def get_user_coupon(self, user_id: UUID, coupon_id: UUID) -> UserCoupon:
        stmt = select(UserCoupon).where(UserCoupon.id == coupon_id, UserCoupon.user_id == user_id)
        coupon = (await self._db.execute(stmt)).scalar_one_or_none()
        if coupon is None:
            raise NotFound("Coupon")
        return coupon

    async def list_available(
        self,
        user_id: UUID,
        *,
        page: int = 1,
        limit: int = 10,
        today: date | None = None,
    ) -> tuple[Sequence[CouponTemplate], int]:
        """Active, in-window, not exhausted templates the user does not hold yet."""

        day = today or utcnow().date()
        held = select(UserCoupon.template_id).where(UserCoupon.user_id == user_id)
        filters = [
            CouponTemplate.status == CouponTemplateStatus.ACTIVE,
            CouponTemplate.valid_from <= day,
            CouponTemplate.valid_until >= day,
            CouponTemplate.id.not_in(held),
            or_(
                CouponTemplate.total_quantity.is_(None),
                CouponTemplate.used_quantity < CouponTemplate.total_quantity,
            ),
        ]
        total = (await self._db.execute(select(func.count(CouponTemplate.id)).where(*filters))).scalar_one()
        stmt = (
            select(CouponTemplate)
            .where(*filters)
            .order_by(CouponTemplate.valid_until.asc(), CouponTemplate.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return (await self._db.execute(stmt)).scalars().all(), int(total or 0)

    async def business_names(self, business_ids: Iterable[Any]) -> dict[str, str]:
        ids = []
        for value in business_ids:
            try:
                ids.append(value if isinstance(value, UUID) else UUID(str(value)))
            except ValueError:
                continue
        if not ids:
            return {}
        stmt = select(Business.id, Business.business_name).where(
            Business.id.in_(ids), Business.status == BusinessStatus.APPROVED
        )
        return {str(row.id): row.business_name for row in (await self._db.execute(stmt)).all()}

    async def expire_stale(self, *, now: datetime | None = None) -> int:
        """Move every active coupon past its expiry to ``expired``."""

        current = now or utcnow()
        stmt = (
            update(UserCoupon)
            .where(UserCoupon.status == UserCouponStatus.ACTIVE, UserCoupon.expires_at <= current)
            .values(status=UserCouponStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        count = int(result.rowcount or 0)
        if count:
            logger.info("Expired stale coupons", count=count)
        return count

    # Helpers

    async def _get_template(self, template_id: UUID, *, for_update: bool = False) -> CouponTemplate:
        stmt = select(CouponTemplate).where(CouponTemplate.id == template_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        template = (await self._db.execute(stmt)).scalar_one_or_none()
        if template is None:
            raise NotFound("Coupon template")
        return template

    async def _get_issuable_template(self, template_id: UUID, current: datetime) -> CouponTemplate:
        template = await self._get_template(template_id, for_update=True)
        if template.status is not CouponTemplateStatus.ACTIVE:
            raise NotFound("Coupon template")
        today = current.date()
        if not (template.valid_from <= today <= template.valid_until):
            raise CouponOutsideValidity()
        return template

    @staticmethod
    def _ensure_quantity(template: CouponTemplate, *, needed: int) -> None:
        remaining = template.remaining_quantity
        if remaining is not None and remaining < needed:
            raise CouponExhausted(details={"remainingQuantity": remaining, "requested": needed})

    @staticmethod
    def _expiry_for(template: CouponTemplate, current: datetime, expiration_days: int | None) -> datetime:
        days = expiration_days if expiration_days is not None else settings.coupon_default_expiration_days
        if days <= 0:
            raise ValidationFailed("expirationDays must be greater than zero")
        return min(current + timedelta(days=days), end_of_day(template.valid_until))

    def _build_coupon(
        self,
        user_id: UUID,
        template: CouponTemplate,
        expires_at: datetime,
        current: datetime,
    ) -> UserCoupon:
        coupon_id = uuid4()
        coupon = UserCoupon(
            id=coupon_id,
            user_id=user_id,
            template_id=template.id,
            template=template,
            status=UserCouponStatus.ACTIVE,
            qr_code_data=issue_coupon_token(coupon_id),
            issued_at=current,
            expires_at=expires_at,
        )
        self._db.add(coupon)
        return coupon

    async def _holds_template(self, user_id: UUID, template_id: UUID) -> bool:
        stmt = select(UserCoupon.id).where(UserCoupon.user_id == user_id, UserCoupon.template_id == template_id)
        return (await self._db.execute(stmt.limit(1))).first() is not None


__all__ = ["BulkIssueResult", "CouponRedemption", "CouponService", "compute_discount"]
