from typing import Optional
from datetime import datetime
from sqlmodel import Field, SQLModel
from enum import Enum
from storefront.core.clock import utcnow

class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"

class PromotionScope(str, Enum):
    ALL = "all"
    BRAND = "brand"
    PRODUCT = "product"

class PromotionState(str, Enum):
    """Lifecycle state derived from a promotion's fields; never stored."""
    INACTIVE = "inactive"
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class Promotion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Promotion Details
    code: str = Field(unique=True, index=True)  # Stored upper-case, e.g. "SAVE10"
    name: str
    description: Optional[str] = None

    # Discount
    discount_type: DiscountType = Field(default=DiscountType.PERCENTAGE)
    discount_value: float  # Percentage (0-100] or fixed amount
    maximum_discount_amount: Optional[float] = None  # Cap for percentage promotions

    # Scope
    applies_to: PromotionScope = Field(default=PromotionScope.ALL)
    brand_id: Optional[int] = Field(default=None, foreign_key="brand.id")
    product_id: Optional[int] = Field(default=None, foreign_key="product.id")

    # Usage Limits
    usage_limit: Optional[int] = None  # Total usage limit (null = unlimited)
    used_count: int = Field(default=0)
    max_uses_per_user: int = Field(default=1)

    # Minimum Order
    minimum_order_amount: float = Field(default=0.0)

    # Validity
    starts_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    # Status
    is_active: bool = Field(default=True)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PromotionUsage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # References
    promotion_id: int = Field(foreign_key="promotion.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    order_id: int = Field(foreign_key="order.id")

    # Actual discount amount applied
    discount_amount: float

    created_at: datetime = Field(default_factory=utcnow)
