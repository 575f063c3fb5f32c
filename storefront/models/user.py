from typing import Optional
from datetime import datetime
from sqlmodel import Field, SQLModel
from storefront.core.clock import utcnow

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: Optional[str] = None
    email: str = Field(unique=True, index=True)

    # Account Status
    is_active: bool = Field(default=True)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
