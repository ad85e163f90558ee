"""
Demo data: a starter furniture catalog and the default admin account.

Run directly to create the admin user:

    python seed.py
"""
import logging
from datetime import datetime, timezone

import settings
from auth import hash_password
from schemas import Product as ProductSchema, User as UserSchema

logger = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    {
        "name": "Modern Sofa Set",
        "description": "Three-seater sofa with deep cushions and solid wood legs.",
        "price": 45999,
        "discount": 15,
        "category": "sofa",
        "images": ["https://images.unsplash.com/photo-1586023492125-27b2c045efd7"],
        "quantity": 12,
        "specifications": {"material": "Fabric, Teak", "dimensions": "210 x 90 x 85 cm", "color": "Grey"},
    },
    {
        "name": "Ergonomic Office Chair",
        "description": "Breathable mesh back, adjustable lumbar support and armrests.",
        "price": 12499,
        "discount": 10,
        "category": "chair",
        "images": ["https://images.unsplash.com/photo-1580480055273-228ff5388ef8"],
        "quantity": 30,
        "specifications": {"material": "Mesh, Steel", "weight": "14 kg", "color": "Black"},
    },
    {
        "name": "Sheesham Dining Table",
        "description": "Six-seater dining table in solid sheesham wood with a natural finish.",
        "price": 38999,
        "discount": 0,
        "category": "table",
        "images": ["https://images.unsplash.com/photo-1615066390971-03e4e1c36ddf"],
        "quantity": 6,
        "specifications": {"material": "Sheesham", "dimensions": "180 x 90 x 76 cm"},
    },
    {
        "name": "King Size Storage Bed",
        "description": "Hydraulic storage bed with upholstered headboard.",
        "price": 52999,
        "discount": 20,
        "category": "bed",
        "images": ["https://images.unsplash.com/photo-1505693416388-ac5ce068fe85"],
        "quantity": 5,
        "specifications": {"material": "Engineered Wood", "dimensions": "200 x 185 cm", "color": "Walnut"},
    },
    {
        "name": "Three Door Wardrobe",
        "description": "Spacious wardrobe with mirror, hanging rail and six shelves.",
        "price": 27999,
        "discount": 5,
        "category": "wardrobe",
        "images": ["https://images.unsplash.com/photo-1558997519-83ea9252edf8"],
        "quantity": 8,
        "specifications": {"material": "Engineered Wood", "color": "White"},
    },
    {
        "name": "Oak Bookshelf",
        "description": "Five-tier open bookshelf in solid oak for books and decor.",
        "price": 9999,
        "discount": 0,
        "category": "bookshelf",
        "images": ["https://images.unsplash.com/photo-1594620302200-9a762244a156"],
        "quantity": 20,
        "specifications": {"material": "Oak", "dimensions": "80 x 30 x 180 cm"},
    },
]


def _stamped(doc: dict) -> dict:
    now = datetime.now(timezone.utc)
    return {**doc, "created_at": now, "updated_at": now}


def seed_catalog(db) -> int:
    """Insert the demo catalog when the product collection is empty."""
    if db["product"].count_documents({}) > 0:
        return 0
    for p in DEMO_PRODUCTS:
        db["product"].insert_one(_stamped(ProductSchema(**p).model_dump()))
    logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))
    return len(DEMO_PRODUCTS)


def create_admin(db) -> bool:
    """Create the default admin account unless an admin already exists."""
    if db["user"].count_documents({"role": "admin"}) > 0:
        return False
    admin = UserSchema(
        name="Admin User",
        email=settings.DEFAULT_ADMIN_EMAIL,
        password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD),
        phone="9876543210",
        role="admin",
    )
    db["user"].insert_one(_stamped(admin.model_dump()))
    logger.info("Created admin user %s", settings.DEFAULT_ADMIN_EMAIL)
    return True


if __name__ == "__main__":
    import database

    logging.basicConfig(level=settings.LOG_LEVEL)
    if database.db is None:
        raise SystemExit("DATABASE_URL is not set")
    database.ensure_indexes()
    if create_admin(database.db):
        print(f"Admin user created: {settings.DEFAULT_ADMIN_EMAIL}")
    else:
        print("Admin user already exists")
