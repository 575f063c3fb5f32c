from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session
from storefront.core.security import get_current_user
from storefront.db.session import get_session
from storefront.models.promotion import DiscountType
from storefront.models.user import User
from storefront.services.order import OrderService
from storefront.services.promotion import PromotionEngine
from storefront.services.promotion_admin import PromotionUsageRead, to_usage_read
from storefront.services.promotion_store import SQLPromotionStore

router = APIRouter()

class CartItemIn(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)

class PromotionValidateRequest(BaseModel):
    code: str
    items: List[CartItemIn] = Field(min_length=1)

class PromotionValidateResponse(BaseModel):
    valid: bool
    code: str
    error: Optional[str] = None
    promotion_id: Optional[int] = None
    promotion_name: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = None
    subtotal: float
    discount_amount: float = 0.0
    final_amount: float

def get_promotion_engine(session: Session = Depends(get_session)) -> PromotionEngine:
    return PromotionEngine(SQLPromotionStore(session))

@router.post("/validate", response_model=PromotionValidateResponse)
def validate_promotion(
    request: PromotionValidateRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    engine: PromotionEngine = Depends(get_promotion_engine)
):
    """Check a promotion code against the given cart without placing an order"""
    lines = OrderService(session, engine).build_cart_lines([item.model_dump() for item in request.items])
    subtotal = sum(line.total for line in lines)
    result = engine.validate(request.code, current_user.id, lines, subtotal)

    if not result.is_valid:
        return PromotionValidateResponse(
            valid=False,
            code=request.code.strip().upper(),
            error=result.error,
            subtotal=subtotal,
            final_amount=subtotal
        )

    promotion = result.promotion
    return PromotionValidateResponse(
        valid=True,
        code=promotion.code,
        promotion_id=promotion.id,
        promotion_name=promotion.name,
        discount_type=promotion.discount_type,
        discount_value=promotion.discount_value,
        subtotal=subtotal,
        discount_amount=result.discount_amount,
        final_amount=round(subtotal - result.discount_amount, 2)
    )

@router.get("/usage", response_model=List[PromotionUsageRead])
def get_my_promotion_usage(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Promotions the current user has redeemed, newest first"""
    store = SQLPromotionStore(session)
    return [to_usage_read(session, usage) for usage in store.list_usage_for_user(current_user.id)]
