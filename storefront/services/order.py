import logging
from collections import defaultdict
from typing import List, Optional, Tuple
from sqlmodel import Session, select
from fastapi import HTTPException
from storefront.core.clock import utcnow
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.product import Product
from storefront.models.promotion import Promotion
from storefront.services.promotion import CartLine, PromotionEngine, subtotal_of
from storefront.services.promotion_store import SQLPromotionStore

logger = logging.getLogger(__name__)

class OrderService:
    def __init__(self, session: Session, engine: Optional[PromotionEngine] = None):
        self.session = session
        self.engine = engine or PromotionEngine(SQLPromotionStore(session))

    def build_cart_lines(self, items_data: List[dict]) -> List[CartLine]:
        """Price cart items from the product table (prevent frontend amount injection)"""
        lines = []
        for item in items_data:
            product = self.session.get(Product, item["product_id"])
            if not product:
                raise HTTPException(status_code=404, detail=f"Product {item['product_id']} not found")

            if not product.is_active:
                raise HTTPException(status_code=400, detail=f"Product {product.name} is not available")

            lines.append(CartLine(
                product_id=product.id,
                quantity=item["quantity"],
                price=product.selling_price,
                brand_id=product.brand_id
            ))
        return lines

    def apply_promotion(self, promotion_code: Optional[str], user_id: int, lines: List[CartLine]) -> Tuple[float, Optional[Promotion]]:
        """Returns (discount_amount, promotion). Raises 400 with the engine's reason if the code is rejected."""
        if not promotion_code:
            return 0.0, None

        result = self.engine.validate(promotion_code, user_id, lines)
        if not result.is_valid:
            raise HTTPException(status_code=400, detail=result.error)
        return result.discount_amount, result.promotion

    def create_order(self, user_id: int, items_data: List[dict], promotion_code: Optional[str] = None) -> Order:
        if not items_data:
            raise HTTPException(status_code=400, detail="Order must contain at least one item")

        lines = self.build_cart_lines(items_data)

        # The same product may appear on several lines
        requested = defaultdict(int)
        for line in lines:
            requested[line.product_id] += line.quantity
        for product_id, quantity in requested.items():
            product = self.session.get(Product, product_id)
            if quantity > product.stock_quantity:
                raise HTTPException(status_code=400, detail=f"Insufficient stock for {product.name}")

        subtotal = subtotal_of(lines)
        discount_amount, promotion = self.apply_promotion(promotion_code, user_id, lines)

        order = Order(
            user_id=user_id,
            total_amount=subtotal,
            discount_amount=discount_amount,
            final_amount=round(subtotal - discount_amount, 2),
            order_status=OrderStatus.PLACED,
            promotion_code=promotion.code if promotion else None,
            items=[
                OrderItem(product_id=line.product_id, quantity=line.quantity, price_at_purchase=line.price)
                for line in lines
            ]
        )
        self.session.add(order)

        # Update product stock
        for line in lines:
            product = self.session.get(Product, line.product_id)
            product.stock_quantity -= line.quantity
            product.updated_at = utcnow()
            self.session.add(product)

        self.session.commit()
        self.session.refresh(order)

        # Track promotion usage once the order exists; the discount is already on the order
        # A zero discount still counts against the usage limits
        if promotion:
            if not self.engine.record_usage(promotion.id, user_id, order.id, discount_amount):
                logger.warning("Order %s placed but usage of promotion %s was not fully recorded", order.id, promotion.code)
            self.session.refresh(order)

        return order

    def get_user_orders(self, user_id: int) -> List[Order]:
        return self.session.exec(
            select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
        ).all()

    def get_order_by_id(self, order_id: int) -> Optional[Order]:
        return self.session.get(Order, order_id)
