from datetime import timedelta
from sqlmodel import Session, select
from storefront.core.clock import utcnow
from storefront.db.session import engine, create_db_and_tables
from storefront.models.product import Brand, Product
from storefront.models.promotion import DiscountType, Promotion, PromotionScope

def seed_catalog():
    print("Creating database and tables...")
    create_db_and_tables()

    with Session(engine) as session:
        # Check if products already exist to avoid duplicates
        existing_products = session.exec(select(Product)).all()
        if existing_products:
            print(f"Database already contains {len(existing_products)} products. Skipping seed.")
            return

        print("Seeding brands, products and promotions...")
        lagos = Brand(name="Lagos Threads", slug="lagos-threads")
        abuja = Brand(name="Abuja Atelier", slug="abuja-atelier")
        session.add(lagos)
        session.add(abuja)
        session.commit()
        session.refresh(lagos)
        session.refresh(abuja)

        products = [
            Product(name="Adire Shirt", slug="adire-shirt", brand_id=lagos.id, mrp=25000.00, selling_price=20000.00, stock_quantity=40),
            Product(name="Ankara Tote", slug="ankara-tote", brand_id=lagos.id, selling_price=8500.00, stock_quantity=100),
            Product(name="Aso Oke Cap", slug="aso-oke-cap", brand_id=abuja.id, selling_price=10000.00, stock_quantity=25),
        ]
        for product in products:
            session.add(product)
        session.commit()

        now = utcnow()
        promotions = [
            Promotion(code="SAVE10", name="10% off everything", discount_type=DiscountType.PERCENTAGE, discount_value=10),
            Promotion(
                code="FLAT500",
                name="500 off orders over 5,000",
                discount_type=DiscountType.FIXED_AMOUNT,
                discount_value=500,
                minimum_order_amount=5000
            ),
            Promotion(
                code="LAGOS20",
                name="20% off Lagos Threads",
                discount_value=20,
                maximum_discount_amount=5000,
                applies_to=PromotionScope.BRAND,
                brand_id=lagos.id,
                usage_limit=100,
                expires_at=now + timedelta(days=30)
            ),
        ]
        for promotion in promotions:
            session.add(promotion)

        session.commit()
        print(f"Successfully seeded {len(products)} products and {len(promotions)} promotions!")

if __name__ == "__main__":
    seed_catalog()
