# Import all models to register them with SQLModel
from storefront.models.user import User
from storefront.models.admin_user import AdminUser, AdminRole
from storefront.models.product import Brand, Product
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.promotion import (
    Promotion,
    PromotionUsage,
    DiscountType,
    PromotionScope,
    PromotionState,
)

__all__ = [
    "User",
    "AdminUser",
    "AdminRole",
    "Brand",
    "Product",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Promotion",
    "PromotionUsage",
    "DiscountType",
    "PromotionScope",
    "PromotionState",
]
