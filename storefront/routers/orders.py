from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session
from storefront.core.security import get_current_user
from storefront.db.session import get_session
from storefront.models.order import Order, OrderStatus
from storefront.models.user import User
from storefront.services.order import OrderService

router = APIRouter()

class OrderCreateItem(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)

class OrderCreate(BaseModel):
    items: List[OrderCreateItem]
    promotion_code: Optional[str] = None

class OrderItemRead(BaseModel):
    product_id: int
    quantity: int
    price_at_purchase: float

class OrderRead(BaseModel):
    id: int
    total_amount: float
    discount_amount: float
    final_amount: float
    order_status: OrderStatus
    promotion_code: Optional[str]
    items: List[OrderItemRead]

def get_order_service(session: Session = Depends(get_session)) -> OrderService:
    return OrderService(session)

def to_order_read(order: Order) -> OrderRead:
    return OrderRead(
        id=order.id,
        total_amount=order.total_amount,
        discount_amount=order.discount_amount,
        final_amount=order.final_amount,
        order_status=order.order_status,
        promotion_code=order.promotion_code,
        items=[
            OrderItemRead(product_id=item.product_id, quantity=item.quantity, price_at_purchase=item.price_at_purchase)
            for item in order.items
        ]
    )

@router.post("/", response_model=OrderRead)
def create_order(
    order_in: OrderCreate,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    items_data = [{"product_id": item.product_id, "quantity": item.quantity} for item in order_in.items]
    order = service.create_order(
        user_id=current_user.id,
        items_data=items_data,
        promotion_code=order_in.promotion_code
    )
    return to_order_read(order)

@router.get("/", response_model=List[OrderRead])
def list_orders(
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    return [to_order_read(order) for order in service.get_user_orders(current_user.id)]

@router.get("/{id}", response_model=OrderRead)
def get_order(
    id: int,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    order = service.get_order_by_id(id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return to_order_read(order)
