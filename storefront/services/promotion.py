import logging
import math
from datetime import datetime
from typing import Callable, List, Optional, Sequence
from pydantic import BaseModel, ConfigDict, Field
from storefront.core.clock import utcnow
from storefront.core.config import settings
from storefront.models.promotion import (
    DiscountType,
    Promotion,
    PromotionScope,
    PromotionState,
    PromotionUsage,
)
from storefront.services.promotion_store import PromotionStore, PromotionStoreError

logger = logging.getLogger(__name__)

INVALID_CODE = "Invalid promotion code"
NOT_STARTED = "This promotion has not started yet"
EXPIRED = "This promotion has expired"
USAGE_LIMIT_REACHED = "This promotion has reached its usage limit"
USER_LIMIT_REACHED = "You have already used this promotion the maximum number of times"
NOT_APPLICABLE = "This promotion does not apply to any items in your cart"
VALIDATION_ERROR = "Error validating promotion"


class CartLine(BaseModel):
    """Snapshot of a cart item handed to the engine by the checkout flow."""
    model_config = ConfigDict(frozen=True)

    product_id: int
    quantity: int = Field(ge=1)
    price: float = Field(ge=0)
    brand_id: Optional[int] = None

    @property
    def total(self) -> float:
        return self.price * self.quantity


class ValidationResult(BaseModel):
    is_valid: bool
    promotion: Optional[Promotion] = None
    error: Optional[str] = None
    discount_amount: Optional[float] = None

    @classmethod
    def invalid(cls, error: str) -> "ValidationResult":
        return cls(is_valid=False, error=error)


def promotion_state(promotion: Promotion, now: Optional[datetime] = None) -> PromotionState:
    """Derive where a promotion sits in its lifecycle at ``now``.

    Checked in the same order validation reports failures, so a promotion that
    is both expired and exhausted reads as expired.
    """
    now = now or utcnow()
    if not promotion.is_active:
        return PromotionState.INACTIVE
    if now < promotion.starts_at:
        return PromotionState.PENDING
    if promotion.expires_at is not None and now >= promotion.expires_at:
        return PromotionState.EXPIRED
    if promotion.usage_limit is not None and promotion.used_count >= promotion.usage_limit:
        return PromotionState.EXHAUSTED
    return PromotionState.ACTIVE


def subtotal_of(lines: Sequence[CartLine]) -> float:
    return sum(line.total for line in lines)


def round_money(amount: float) -> float:
    # Half-up on the scaled value; round() would use banker's rounding
    return math.floor(amount * 100 + 0.5) / 100


def calculate_discount(promotion: Promotion, applicable_lines: Sequence[CartLine], subtotal: float) -> float:
    """Discount for ``applicable_lines``, never more than either subtotal."""
    applicable_subtotal = subtotal_of(applicable_lines)

    discount_amount = 0.0
    if promotion.discount_type == DiscountType.PERCENTAGE:
        discount_amount = applicable_subtotal * promotion.discount_value / 100
        if promotion.maximum_discount_amount and discount_amount > promotion.maximum_discount_amount:
            discount_amount = promotion.maximum_discount_amount
    elif promotion.discount_type == DiscountType.FIXED_AMOUNT:
        discount_amount = min(promotion.discount_value, applicable_subtotal)

    discount_amount = min(discount_amount, subtotal)
    return round_money(max(discount_amount, 0.0))


def format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return f"{amount:,.0f}"
    return f"{amount:,.2f}"


class PromotionEngine:
    def __init__(
        self,
        store: PromotionStore,
        clock: Callable[[], datetime] = utcnow,
        currency_symbol: Optional[str] = None,
    ):
        self.store = store
        self.clock = clock
        self.currency_symbol = currency_symbol if currency_symbol is not None else settings.CURRENCY_SYMBOL

    def validate(
        self,
        code: str,
        user_id: int,
        cart_lines: Sequence[CartLine],
        subtotal: Optional[float] = None,
    ) -> ValidationResult:
        """Check ``code`` against the cart and work out its discount.

        When ``subtotal`` is omitted it is computed from ``cart_lines``.
        Every failure comes back as an invalid result; nothing is raised.
        """
        if not code or not code.strip():
            return ValidationResult.invalid(INVALID_CODE)
        if subtotal is None:
            subtotal = subtotal_of(cart_lines)

        try:
            promotion = self.store.find_active_promotion_by_code(code.strip().upper())
        except PromotionStoreError:
            logger.exception("Error looking up promotion code %r", code)
            return ValidationResult.invalid(VALIDATION_ERROR)

        if not promotion:
            return ValidationResult.invalid(INVALID_CODE)

        state = promotion_state(promotion, self.clock())
        if state == PromotionState.PENDING:
            return ValidationResult.invalid(NOT_STARTED)
        if state == PromotionState.EXPIRED:
            return ValidationResult.invalid(EXPIRED)
        if state == PromotionState.EXHAUSTED:
            return ValidationResult.invalid(USAGE_LIMIT_REACHED)
        if state == PromotionState.INACTIVE:
            return ValidationResult.invalid(INVALID_CODE)

        # Check-then-act: not isolated from a concurrent record_usage
        try:
            user_usage_count = self.store.count_usage_records(promotion.id, user_id)
        except PromotionStoreError:
            logger.exception("Error checking usage of promotion %s for user %s", promotion.id, user_id)
            return ValidationResult.invalid(VALIDATION_ERROR)

        if user_usage_count >= promotion.max_uses_per_user:
            return ValidationResult.invalid(USER_LIMIT_REACHED)

        if subtotal < promotion.minimum_order_amount:
            return ValidationResult.invalid(
                f"Minimum order amount of {self.currency_symbol}"
                f"{format_amount(promotion.minimum_order_amount)} required"
            )

        try:
            applicable_lines = self.get_applicable_lines(promotion, cart_lines)
        except PromotionStoreError:
            logger.exception("Error resolving products for promotion %s", promotion.id)
            return ValidationResult.invalid(VALIDATION_ERROR)

        if not applicable_lines:
            return ValidationResult.invalid(NOT_APPLICABLE)

        return ValidationResult(
            is_valid=True,
            promotion=promotion,
            discount_amount=calculate_discount(promotion, applicable_lines, subtotal),
        )

    def get_applicable_lines(self, promotion: Promotion, cart_lines: Sequence[CartLine]) -> List[CartLine]:
        if promotion.applies_to == PromotionScope.ALL:
            return list(cart_lines)

        if promotion.applies_to == PromotionScope.BRAND and promotion.brand_id is not None:
            brand_product_ids = self.store.find_product_ids_by_brand(promotion.brand_id)
            return [line for line in cart_lines if line.product_id in brand_product_ids]

        if promotion.applies_to == PromotionScope.PRODUCT and promotion.product_id is not None:
            return [line for line in cart_lines if line.product_id == promotion.product_id]

        return []

    def record_usage(self, promotion_id: int, user_id: int, order_id: int, discount_amount: float) -> bool:
        """Store one redemption and bump the promotion's counter.

        Call once, after the order exists. A failed increment leaves the usage
        record in place and returns False.
        """
        usage = PromotionUsage(
            promotion_id=promotion_id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
        )
        try:
            self.store.insert_usage_record(usage)
        except PromotionStoreError:
            logger.exception("Error recording usage of promotion %s on order %s", promotion_id, order_id)
            return False

        try:
            self.store.atomic_increment_used_count(promotion_id)
        except PromotionStoreError:
            logger.exception(
                "Usage of promotion %s recorded for order %s but used_count was not incremented",
                promotion_id,
                order_id,
            )
            return False

        logger.info("Promotion %s redeemed by user %s on order %s (%.2f)", promotion_id, user_id, order_id, discount_amount)
        return True
