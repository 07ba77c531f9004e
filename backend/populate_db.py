import os
import random
import sys

# Add 'backend' folder to Python path
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

from config import get_settings
from database import make_engine, make_session_factory, init_db
from models.users import User
from models.category import Category, SubCategory
from models.product import Product
from models.coupon import Coupon, DiscountType
from utils.hashing import get_password_hash
from utils.text import slugify

# Configuration
ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@storefront.dev")
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "Admin1234")
PRODUCTS_PER_SUBCATEGORY = 5

CATALOG = {
    "Fitness Equipment": ["Dumbbells", "Resistance Bands", "Yoga Mats"],
    "Supplements": ["Protein", "Vitamins"],
    "Apparel": ["Shirts", "Shoes"],
}
BRANDS = ["Atlas", "Northpeak", "Vigor", "Corefit"]
# End Configuration


def seed():
    """Creates an admin account, a small catalog and a welcome coupon."""
    engine = make_engine(get_settings().DATABASE_URL)
    init_db(engine)
    session = make_session_factory(engine)()

    try:
        if not session.query(User).filter(User.email == ADMIN_EMAIL).first():
            session.add(User(
                name="Admin", email=ADMIN_EMAIL, password_hash=get_password_hash(ADMIN_PASSWORD), role="admin"
            ))
            print(f"Created admin {ADMIN_EMAIL}")

        for cat_name, sub_names in CATALOG.items():
            if session.query(Category).filter(Category.name == cat_name).first():
                continue
            category = Category(
                name=cat_name,
                slug=slugify(cat_name),
                description=f"{cat_name} for every training level.",
                subcategories=[SubCategory(name=s, slug=slugify(s)) for s in sub_names],
            )
            session.add(category)
            session.flush()

            for sub in category.subcategories:
                for n in range(1, PRODUCTS_PER_SUBCATEGORY + 1):
                    title = f"{sub.name} Model {n}"
                    price = round(random.uniform(5.00, 300.00), 2)
                    # Every third product is on sale
                    discount = round(price * 0.8, 2) if n % 3 == 0 else 0
                    session.add(Product(
                        title=title,
                        slug=slugify(title),
                        sku=f"{slugify(sub.name)[:6].upper()}-{n:03d}",
                        description=f"{title} from the {cat_name} range.",
                        brand=random.choice(BRANDS),
                        price=price,
                        discount_price=discount,
                        stock=random.randint(0, 200),
                        category_id=category.id,
                        subcategory_id=sub.id,
                        main_image_url=f"https://picsum.photos/seed/{slugify(title)}/600/600",
                        tags=[slugify(cat_name), slugify(sub.name)],
                        is_featured=(n == 1),
                    ))
            print(f"Created category {cat_name} with {len(sub_names) * PRODUCTS_PER_SUBCATEGORY} products")

        if not session.query(Coupon).filter(Coupon.code == "WELCOME10").first():
            session.add(Coupon(code="WELCOME10", discount=10, discount_type=DiscountType.PERCENTAGE.value))
            print("Created coupon WELCOME10")

        session.commit()
    finally:
        session.close()


if __name__ == "__main__":
    seed()
