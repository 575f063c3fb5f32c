from typing import List, Optional, Set
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from storefront.models.product import Product
from storefront.models.promotion import Promotion, PromotionUsage


class PromotionStoreError(Exception):
    """The backing store could not be reached or rejected a query."""


class PromotionStore:
    """Row-store queries the promotion engine depends on."""

    def find_active_promotion_by_code(self, code: str) -> Optional[Promotion]:
        raise NotImplementedError

    def count_usage_records(self, promotion_id: int, user_id: int) -> int:
        raise NotImplementedError

    def find_product_ids_by_brand(self, brand_id: int) -> Set[int]:
        raise NotImplementedError

    def insert_usage_record(self, usage: PromotionUsage) -> PromotionUsage:
        raise NotImplementedError

    def atomic_increment_used_count(self, promotion_id: int) -> None:
        raise NotImplementedError


class SQLPromotionStore(PromotionStore):
    def __init__(self, session: Session):
        self.session = session

    def _fail(self, exc: SQLAlchemyError, action: str) -> PromotionStoreError:
        self.session.rollback()
        return PromotionStoreError(f"Failed to {action}: {exc}")

    def find_active_promotion_by_code(self, code: str) -> Optional[Promotion]:
        try:
            return self.session.exec(
                select(Promotion).where(
                    Promotion.code == code.upper(),
                    Promotion.is_active == True  # noqa: E712
                )
            ).first()
        except SQLAlchemyError as e:
            raise self._fail(e, "look up promotion") from e

    def count_usage_records(self, promotion_id: int, user_id: int) -> int:
        try:
            return self.session.exec(
                select(func.count()).select_from(PromotionUsage).where(
                    PromotionUsage.promotion_id == promotion_id,
                    PromotionUsage.user_id == user_id
                )
            ).one()
        except SQLAlchemyError as e:
            raise self._fail(e, "count promotion usage") from e

    def find_product_ids_by_brand(self, brand_id: int) -> Set[int]:
        try:
            return set(self.session.exec(
                select(Product.id).where(Product.brand_id == brand_id)
            ).all())
        except SQLAlchemyError as e:
            raise self._fail(e, "load brand products") from e

    def insert_usage_record(self, usage: PromotionUsage) -> PromotionUsage:
        try:
            self.session.add(usage)
            self.session.commit()
            self.session.refresh(usage)
            return usage
        except SQLAlchemyError as e:
            raise self._fail(e, "insert promotion usage") from e

    def atomic_increment_used_count(self, promotion_id: int) -> None:
        # Single UPDATE so concurrent redemptions can't lose increments
        try:
            result = self.session.exec(
                update(Promotion)
                .where(Promotion.id == promotion_id)
                .values(used_count=Promotion.used_count + 1)
            )
            if result.rowcount == 0:
                self.session.rollback()
                raise PromotionStoreError(f"Promotion {promotion_id} not found")
            self.session.commit()
        except SQLAlchemyError as e:
            raise self._fail(e, "increment promotion usage") from e

    def list_usage_for_user(self, user_id: int) -> List[PromotionUsage]:
        return self.session.exec(
            select(PromotionUsage)
            .where(PromotionUsage.user_id == user_id)
            .order_by(PromotionUsage.created_at.desc(), PromotionUsage.id.desc())
        ).all()

    def list_usage_for_promotion(self, promotion_id: int) -> List[PromotionUsage]:
        return self.session.exec(
            select(PromotionUsage)
            .where(PromotionUsage.promotion_id == promotion_id)
            .order_by(PromotionUsage.created_at.desc(), PromotionUsage.id.desc())
        ).all()
