from typing import List, Optional
from datetime import datetime, timezone
from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlmodel import Session, select, or_
from storefront.core.clock import utcnow
from storefront.models.order import Order
from storefront.models.product import Brand, Product
from storefront.models.promotion import (
    DiscountType,
    Promotion,
    PromotionScope,
    PromotionState,
    PromotionUsage,
)
from storefront.services.promotion import promotion_state
from storefront.services.promotion_store import SQLPromotionStore


class PromotionCreate(BaseModel):
    code: str
    name: str = Field(min_length=1)
    description: Optional[str] = None
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: float = Field(gt=0)
    maximum_discount_amount: Optional[float] = Field(default=None, gt=0)
    applies_to: PromotionScope = PromotionScope.ALL
    brand_id: Optional[int] = None
    product_id: Optional[int] = None
    usage_limit: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: int = Field(default=1, ge=1)
    minimum_order_amount: float = Field(default=0.0, ge=0)
    starts_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        value = value.strip().upper()
        if not value or any(ch.isspace() for ch in value):
            raise ValueError("Promotion code must be a single non-empty word")
        return value

    @field_validator("starts_at", "expires_at")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @model_validator(mode="after")
    def check_rules(self) -> "PromotionCreate":
        if self.discount_type == DiscountType.PERCENTAGE:
            if self.discount_value > 100:
                raise ValueError("Percentage discount cannot exceed 100")
        elif self.maximum_discount_amount is not None:
            raise ValueError("Maximum discount amount only applies to percentage promotions")

        # Keep only the target id that matches the scope
        if self.applies_to == PromotionScope.BRAND:
            if self.brand_id is None:
                raise ValueError("brand_id is required for brand promotions")
            self.product_id = None
        elif self.applies_to == PromotionScope.PRODUCT:
            if self.product_id is None:
                raise ValueError("product_id is required for product promotions")
            self.brand_id = None
        else:
            self.brand_id = None
            self.product_id = None

        if self.expires_at is not None and self.expires_at <= self.starts_at:
            raise ValueError("expires_at must be after starts_at")
        return self


class PromotionUpdate(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = None
    maximum_discount_amount: Optional[float] = None
    applies_to: Optional[PromotionScope] = None
    brand_id: Optional[int] = None
    product_id: Optional[int] = None
    usage_limit: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    minimum_order_amount: Optional[float] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class PromotionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: Optional[str]
    discount_type: DiscountType
    discount_value: float
    maximum_discount_amount: Optional[float]
    applies_to: PromotionScope
    brand_id: Optional[int]
    product_id: Optional[int]
    usage_limit: Optional[int]
    used_count: int
    max_uses_per_user: int
    minimum_order_amount: float
    starts_at: datetime
    expires_at: Optional[datetime]
    is_active: bool
    state: PromotionState
    created_at: datetime
    updated_at: datetime


class PromotionUsageRead(BaseModel):
    id: int
    promotion_id: int
    promotion_code: Optional[str]
    promotion_name: Optional[str]
    user_id: int
    order_id: int
    order_total: Optional[float]
    discount_amount: float
    created_at: datetime


def to_read(promotion: Promotion, now: Optional[datetime] = None) -> PromotionRead:
    return PromotionRead.model_validate(
        {**promotion.model_dump(), "state": promotion_state(promotion, now)}
    )


def to_usage_read(session: Session, usage: PromotionUsage) -> PromotionUsageRead:
    promotion = session.get(Promotion, usage.promotion_id)
    order = session.get(Order, usage.order_id)
    return PromotionUsageRead(
        id=usage.id,
        promotion_id=usage.promotion_id,
        promotion_code=promotion.code if promotion else None,
        promotion_name=promotion.name if promotion else None,
        user_id=usage.user_id,
        order_id=usage.order_id,
        order_total=order.final_amount if order else None,
        discount_amount=usage.discount_amount,
        created_at=usage.created_at
    )


class PromotionAdminService:
    def __init__(self, session: Session):
        self.session = session
        self.store = SQLPromotionStore(session)

    def list_promotions(self, search: Optional[str] = None) -> List[PromotionRead]:
        query = select(Promotion)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                Promotion.code.ilike(pattern),
                Promotion.name.ilike(pattern),
                Promotion.description.ilike(pattern)
            ))
        promotions = self.session.exec(query.order_by(Promotion.created_at.desc(), Promotion.id.desc())).all()
        now = utcnow()
        return [to_read(promotion, now) for promotion in promotions]

    def get_promotion(self, promotion_id: int) -> Promotion:
        promotion = self.session.get(Promotion, promotion_id)
        if not promotion:
            raise HTTPException(status_code=404, detail="Promotion not found")
        return promotion

    def _check_targets(self, data: PromotionCreate):
        if data.brand_id is not None and not self.session.get(Brand, data.brand_id):
            raise HTTPException(status_code=400, detail=f"Brand {data.brand_id} not found")
        if data.product_id is not None and not self.session.get(Product, data.product_id):
            raise HTTPException(status_code=400, detail=f"Product {data.product_id} not found")

    def _check_code_free(self, code: str, exclude_id: Optional[int] = None):
        existing = self.session.exec(select(Promotion).where(Promotion.code == code)).first()
        if existing and existing.id != exclude_id:
            raise HTTPException(status_code=409, detail=f"Promotion code {code} already exists")

    def create_promotion(self, data: PromotionCreate) -> Promotion:
        self._check_code_free(data.code)
        self._check_targets(data)

        promotion = Promotion(**data.model_dump())
        self.session.add(promotion)
        self.session.commit()
        self.session.refresh(promotion)
        return promotion

    def update_promotion(self, promotion_id: int, data: PromotionUpdate) -> Promotion:
        promotion = self.get_promotion(promotion_id)

        # Re-run the create rules on the merged record
        merged = promotion.model_dump(exclude={"id", "used_count", "created_at", "updated_at"})
        merged.update(data.model_dump(exclude_unset=True))
        try:
            validated = PromotionCreate(**merged)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if validated.usage_limit is not None and promotion.used_count > validated.usage_limit:
            raise HTTPException(
                status_code=400,
                detail=f"Usage limit cannot be below the {promotion.used_count} redemptions already made"
            )
        self._check_code_free(validated.code, exclude_id=promotion.id)
        self._check_targets(validated)

        for key, value in validated.model_dump().items():
            setattr(promotion, key, value)
        promotion.updated_at = utcnow()
        self.session.add(promotion)
        self.session.commit()
        self.session.refresh(promotion)
        return promotion

    def toggle_active(self, promotion_id: int) -> Promotion:
        promotion = self.get_promotion(promotion_id)
        promotion.is_active = not promotion.is_active
        promotion.updated_at = utcnow()
        self.session.add(promotion)
        self.session.commit()
        self.session.refresh(promotion)
        return promotion

    def delete_promotion(self, promotion_id: int):
        promotion = self.get_promotion(promotion_id)
        if promotion.used_count > 0 or self.store.list_usage_for_promotion(promotion.id):
            raise HTTPException(
                status_code=400,
                detail="Promotion has been redeemed; deactivate it instead of deleting"
            )
        self.session.delete(promotion)
        self.session.commit()
        return {"message": "Promotion deleted"}

    def get_usage(self, promotion_id: int) -> List[PromotionUsageRead]:
        promotion = self.get_promotion(promotion_id)
        return [to_usage_read(self.session, usage) for usage in self.store.list_usage_for_promotion(promotion.id)]
