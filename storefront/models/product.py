from typing import Optional
from datetime import datetime
from sqlmodel import Field, SQLModel
from pydantic import computed_field
from storefront.core.clock import utcnow

class Brand(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    slug: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow)

class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: str = Field(index=True)
    slug: str = Field(index=True, unique=True)
    brand_id: Optional[int] = Field(default=None, foreign_key="brand.id", index=True)

    # Pricing
    mrp: Optional[float] = None
    selling_price: float

    # Inventory
    stock_quantity: int = Field(default=0)

    # Metadata
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def in_stock(self) -> bool:
        return self.stock_quantity > 0
