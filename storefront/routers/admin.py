from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select
from storefront.core.security import get_current_user
from storefront.db.session import get_session
from storefront.models.admin_user import AdminUser, AdminRole
from storefront.models.user import User
from storefront.services.promotion_admin import (
    PromotionAdminService,
    PromotionCreate,
    PromotionRead,
    PromotionUpdate,
    PromotionUsageRead,
    to_read,
)

router = APIRouter()

def get_admin_user(current_user: User = Depends(get_current_user), session: Session = Depends(get_session)) -> AdminUser:
    """Get admin user with permissions check"""
    admin_user = session.exec(select(AdminUser).where(AdminUser.user_id == current_user.id)).first()
    if not admin_user:
        raise HTTPException(status_code=403, detail="Admin access required")

    if not admin_user.is_active:
        raise HTTPException(status_code=403, detail="Admin account is inactive")

    return admin_user

def check_permission(admin_user: AdminUser, permission: str) -> bool:
    """Check if admin user has specific permission"""
    if admin_user.role == AdminRole.SUPER_ADMIN:
        return True
    if admin_user.role == AdminRole.MARKETING_MANAGER and permission.startswith("promotions."):
        return True

    # Check granular permissions
    return permission in admin_user.permissions

def require_permission(admin_user: AdminUser, permission: str):
    if not check_permission(admin_user, permission):
        raise HTTPException(status_code=403, detail=f"Missing permission: {permission}")

def get_promotion_admin_service(session: Session = Depends(get_session)) -> PromotionAdminService:
    return PromotionAdminService(session)

@router.get("/promotions", response_model=List[PromotionRead])
def list_promotions(
    search: Optional[str] = Query(None),
    admin_user: AdminUser = Depends(get_admin_user),
    service: PromotionAdminService = Depends(get_promotion_admin_service)
):
    """List promotions with their current lifecycle state"""
    require_permission(admin_user, "promotions.view")
    return service.list_promotions(search)

@router.get("/promotions/{promotion_id}", response_model=PromotionRead)
def get_promotion(
    promotion_id: int,
    admin_user: AdminUser = Depends(get_admin_user),
    service: PromotionAdminService = Depends(get_promotion_admin_service)
):
    require_permission(admin_user, "promotions.view")
    return to_read(service.get_promotion(promotion_id))

@router.post("/promotions", response_model=PromotionRead)
def create_promotion(
    data: PromotionCreate,
    admin_user: AdminUser = Depends(get_admin_user),
    service: PromotionAdminService = Depends(get_promotion_admin_service)
):
    require_permission(admin_user, "promotions.manage")
    return to_read(service.create_promotion(data))

@router.put("/promotions/{promotion_id}", response_model=PromotionRead)
def update_promotion(
    promotion_id: int,
    data: PromotionUpdate,
    admin_user: AdminUser = Depends(get_admin_user),
    service: PromotionAdminService = Depends(get_promotion_admin_service)
):
    require_permission(admin_user, "promotions.manage")
    return to_read(service.update_promotion(promotion_id, data))

@router.put("/promotions/{promotion_id}/toggle", response_model=PromotionRead)
def toggle_promotion(
    promotion_id: int,
    admin_user: AdminUser = Depends(get_admin_user),
    service: PromotionAdminService = Depends(get_promotion_admin_service)
):
    """Activate or deactivate a promotion"""
    require_permission(admin_user, "promotions.manage")
    return to_read(service.toggle_active(promotion_id))

@router.delete("/promotions/{promotion_id}")
def delete_promotion(
    promotion_id: int,
    admin_user: AdminUser = Depends(get_admin_user),
    service: PromotionAdminService = Depends(get_promotion_admin_service)
):
    require_permission(admin_user, "promotions.manage")
    return service.delete_promotion(promotion_id)

@router.get("/promotions/{promotion_id}/usage", response_model=List[PromotionUsageRead])
def get_promotion_usage(
    promotion_id: int,
    admin_user: AdminUser = Depends(get_admin_user),
    service: PromotionAdminService = Depends(get_promotion_admin_service)
):
    """Redemptions of a promotion, newest first"""
    require_permission(admin_user, "promotions.view")
    return service.get_usage(promotion_id)
