from sqlalchemy.orm import Session
from dropship.database import SessionLocal, Base
from dropship.models import User, UserRole, Supplier, Product, ProductType, Transaction
from dropship.auth import PasswordHasher, get_password_hasher
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password123"

def create_demo_data(db: Session, hasher: PasswordHasher):
    try:
        Base.metadata.create_all(bind=db.get_bind())
        db.query(Transaction).delete()
        db.query(ProductType).delete()
        db.query(Product).delete()
        db.query(Supplier).delete()
        db.query(User).delete()
        db.commit()
        users = [
            {"name": "Admin", "email": "admin@tokobaju.co.id", "role": UserRole.admin},
            {"name": "Dropshipper", "email": "dropshipper@tokobaju.co.id", "role": UserRole.dropshipper},
            {"name": "Gudang", "email": "warehouse@tokobaju.co.id", "role": UserRole.warehouse},
        ]
        for user in users:
            db.add(User(
                name=user["name"],
                outlet_name=f"{user['name']} Outlet",
                email=user["email"],
                role=user["role"],
                hashed_password=hasher.hash(DEMO_PASSWORD)
            ))
        db.commit()
        admin = db.query(User).filter(User.role == UserRole.admin).first()
        supplier = Supplier(
            name="Konveksi Maju",
            address="Jl. Merdeka 1, Bandung",
            phone="0812000000",
            email="supplier@tokobaju.co.id",
            created_by=admin.id
        )
        db.add(supplier)
        product = Product(name="Shirt", color="Blue", supplier=supplier, images=[], created_by=admin.id)
        product.product_types = [
            ProductType(size="M", price=50, stock=10, created_by=admin.id),
            ProductType(size="L", price=55, stock=5, created_by=admin.id),
        ]
        db.add(product)
        db.commit()
        logger.info("demo data loaded")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("failed to load demo data")
        raise

def main():
    db = SessionLocal()
    try:
        create_demo_data(db, get_password_hasher())
    finally:
        db.close()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
