from typing import Optional, List
from datetime import datetime
from sqlmodel import Field, SQLModel, Column
from sqlalchemy import JSON
from enum import Enum
from storefront.core.clock import utcnow

class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"  # Full access
    MARKETING_MANAGER = "marketing_manager"  # Manage promotions
    CUSTOMER_SUPPORT = "customer_support"  # View only

class AdminUser(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Link to main User table
    user_id: int = Field(foreign_key="user.id", unique=True, index=True)

    # Role & Permissions
    role: AdminRole = Field(default=AdminRole.CUSTOMER_SUPPORT)

    # Granular Permissions (list of permission strings)
    # e.g., ["promotions.view", "promotions.manage"]
    permissions: List[str] = Field(default=[], sa_column=Column(JSON))

    # Status
    is_active: bool = Field(default=True)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
