import os
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from dropship.database import Base, get_db, enable_sqlite_foreign_keys
from dropship.main import app
from dropship.models import User, UserRole, Supplier, Product, ProductType
from dropship.auth import PasswordHasher, get_password_hasher, get_token_service

# 使用 SQLite 記憶體資料庫進行測試，StaticPool 讓所有執行緒共用同一條連線
SQLALCHEMY_DATABASE_URL = "sqlite://"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# bcrypt 太慢，測試改用 pbkdf2
test_hasher = PasswordHasher(schemes=("pbkdf2_sha256",))

@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_password_hasher] = lambda: test_hasher
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

@pytest.fixture
def hasher():
    return test_hasher

def make_user(db: Session, name: str, email: str, role: UserRole, password: str = "password123"):
    user = User(
        name=name,
        outlet_name=f"{name} Outlet",
        email=email,
        phone="0811111111",
        role=role,
        hashed_password=test_hasher.hash(password)
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

@pytest.fixture
def admin_user(db):
    return make_user(db, "Admin", "admin@tokobaju.co.id", UserRole.admin)

@pytest.fixture
def warehouse_user(db):
    return make_user(db, "Gudang", "gudang@tokobaju.co.id", UserRole.warehouse)

@pytest.fixture
def dropshipper_user(db):
    return make_user(db, "Reseller", "reseller@tokobaju.co.id", UserRole.dropshipper)

def token_for(user: User):
    return get_token_service().create_access_token({"sub": str(user.id), "role": user.role.value})

@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {token_for(admin_user)}"}

@pytest.fixture
def warehouse_headers(warehouse_user):
    return {"Authorization": f"Bearer {token_for(warehouse_user)}"}

@pytest.fixture
def dropshipper_headers(dropshipper_user):
    return {"Authorization": f"Bearer {token_for(dropshipper_user)}"}

@pytest.fixture
def test_supplier(db, admin_user):
    supplier = Supplier(
        name="Konveksi Maju",
        address="Jl. Merdeka 1, Bandung",
        phone="0812000000",
        email="konveksi@tokobaju.co.id",
        created_by=admin_user.id
    )
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return supplier

@pytest.fixture
def test_product(db, admin_user, test_supplier):
    product = Product(
        name="Shirt",
        color="Blue",
        supplier=test_supplier,
        images=["shirt-front.jpg"],
        created_by=admin_user.id
    )
    product.product_types = [
        ProductType(size="M", price=50.0, stock=10, created_by=admin_user.id),
        ProductType(size="L", price=55.0, stock=5, created_by=admin_user.id),
    ]
    db.add(product)
    db.commit()
    db.refresh(product)
    return product
