import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.orm import relationship
from dropship.database import Base
#https://docs.sqlalchemy.org/en/20/orm/quickstart.html#declare-models

class UserRole(str, enum.Enum):
    admin = "admin"
    dropshipper = "dropshipper"
    warehouse = "warehouse"

# 共用的稽核欄位
class AuditMixin:
    created_at = Column(DateTime, default=datetime.now, index=True)
    created_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    updated_by = Column(Integer, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(Integer, nullable=True)

class User(AuditMixin, Base):
    __tablename__ = "user"
    id = Column(Integer, primary_key=True, index=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.dropshipper)
    name = Column(String(255), nullable=False)
    outlet_name = Column(String(255), nullable=False)
    address = Column(String(255), nullable=True)
    phone = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)

class Supplier(AuditMixin, Base):
    __tablename__ = "supplier"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)
    email = Column(String(255), nullable=False)

class Product(AuditMixin, Base):
    __tablename__ = "product"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    color = Column(String(255), nullable=False)
    supplier_id = Column(Integer, ForeignKey("supplier.id", ondelete="SET NULL"), nullable=True, index=True)
    images = Column(JSON, nullable=False, default=list)
    status = Column(String(50), nullable=True)
    supplier = relationship("Supplier")
    # 產品擁有全部的規格，整組替換時舊的會被刪除
    product_types = relationship(
        "ProductType",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductType.id",
    )

class ProductType(AuditMixin, Base):
    __tablename__ = "product_type"
    id = Column(Integer, primary_key=True, index=True)
    size = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    product_id = Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True)
    product = relationship("Product", back_populates="product_types")

class Transaction(AuditMixin, Base):
    __tablename__ = "product_transaction"
    id = Column(Integer, primary_key=True, index=True)
    product_type_id = Column(Integer, ForeignKey("product_type.id", ondelete="SET NULL"), nullable=True, index=True)
    qty = Column(Integer, nullable=False)
    subtotal = Column(Float, nullable=False)
    grandtotal = Column(Float, nullable=False)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True, index=True)
    product_type = relationship("ProductType")
    user = relationship("User")
