from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy import select, func, case, and_
from dropship.models import Product, ProductType, Supplier, Transaction, User, UserRole
from dropship.schemas import (
    ProductCreate, ProductUpdate, SupplierCreate, SupplierUpdate, TransactionCreate, TransactionUpdate,
    UserCreate, UserUpdate, DashboardSummary, SuccessResponse, ProductTypeCreate, VariantUpdate
)
from dropship.auth import PasswordHasher, get_current_user
from datetime import datetime, timedelta
from fastapi import HTTPException, Depends
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

COMPLETED_STATUS = "Selesai"

# 統一錯誤回應格式
def error_response(error_code: str, message: str):
    return {"success": False, "error_code": error_code, "message": message}

# 資料庫錯誤只記錄在伺服器端，回應給客戶端的是固定訊息
def database_error(e: SQLAlchemyError):
    logger.exception("database operation failed: %s", e)
    return HTTPException(
        status_code=500,
        detail=error_response("DATABASE_ERROR", "資料庫操作失敗")
    )

def not_found(error_code: str, message: str):
    return HTTPException(status_code=404, detail=error_response(error_code, message))

# 使用者註冊
def create_user(db: Session, user: UserCreate, hasher: PasswordHasher, current_user: Optional[User] = None):
    # 公開註冊只能建立 dropshipper，其它角色由管理員指定
    if user.role != UserRole.dropshipper and (current_user is None or current_user.role != UserRole.admin):
        raise HTTPException(
            status_code=403,
            detail=error_response("403_FORBIDDEN", "僅管理員可以指定角色")
        )
    try:
        if db.query(User).filter(User.email == user.email).first():
            raise HTTPException(
                status_code=400,
                detail=error_response("EMAIL_USED", "Email 已被使用")
            )
        db_user = User(
            **user.model_dump(exclude={"password"}),
            hashed_password=hasher.hash(user.password),
            created_by=current_user.id if current_user else None
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        logger.info("user %s registered with role %s", db_user.id, db_user.role.value)
        return db_user
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 登入驗證
def authenticate_user(db: Session, email: str, password: str, hasher: PasswordHasher):
    user = db.query(User).filter(User.email == email).first()
    if not user or not hasher.verify(password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail=error_response("INVALID_CREDENTIALS", "帳號或密碼錯誤"),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

def get_user_by_id(db: Session, user_id: int):
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise not_found("USER_NOT_FOUND", f"使用者ID:{user_id}不存在")
        return user
    except SQLAlchemyError as e:
        raise database_error(e)

def get_user_list(db: Session):
    try:
        users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
        return {"user": users, "total": len(users)}
    except SQLAlchemyError as e:
        raise database_error(e)

# 只能改自己的資料，管理員可以改任何人；角色只有管理員能改
def update_user(db: Session, user_id: int, user: UserUpdate, hasher: PasswordHasher, current_user: User):
    is_admin = current_user.role == UserRole.admin
    if not is_admin and current_user.id != user_id:
        raise HTTPException(
            status_code=403,
            detail=error_response("403_FORBIDDEN", "僅管理員或本人可以修改使用者資料")
        )
    update_data = user.model_dump(exclude_unset=True)
    if not is_admin and update_data.get("role") is not None:
        raise HTTPException(
            status_code=403,
            detail=error_response("403_FORBIDDEN", "僅管理員可以修改角色")
        )
    try:
        db_user = get_user_by_id(db, user_id)
        if update_data.get("email") and update_data["email"] != db_user.email:
            if db.query(User).filter(User.email == update_data["email"]).first():
                raise HTTPException(
                    status_code=400,
                    detail=error_response("EMAIL_USED", "Email 已被使用")
                )
        password = update_data.pop("password", None)
        if password:
            db_user.hashed_password = hasher.hash(password)
        for key, value in update_data.items():
            if value is not None:
                setattr(db_user, key, value)
        db_user.updated_by = current_user.id
        db_user.updated_at = datetime.now()
        db.commit()
        db.refresh(db_user)
        return db_user
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

def delete_user(db: Session, user_id: int):
    try:
        db_user = get_user_by_id(db, user_id)
        db.delete(db_user)
        db.commit()
        return SuccessResponse(message="使用者刪除成功")
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 供應商新增
def create_supplier(db: Session, supplier: SupplierCreate, current_user: User):
    try:
        db_supplier = Supplier(**supplier.model_dump(), created_by=current_user.id)
        db.add(db_supplier)
        db.commit()
        db.refresh(db_supplier)
        return db_supplier
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 讀取供應商
def get_supplier_by_id(db: Session, supplier_id: int):
    try:
        supplier = db.query(Supplier).filter(Supplier.id == supplier_id).first()
        if not supplier:
            raise not_found("SUPPLIER_NOT_FOUND", f"供應商ID:{supplier_id}不存在")
        return supplier
    except SQLAlchemyError as e:
        raise database_error(e)

# 查詢供應商清單
def get_supplier_list(db: Session):
    try:
        suppliers = db.query(Supplier).order_by(Supplier.created_at.desc(), Supplier.id.desc()).all()
        return {"supplier": suppliers, "total": len(suppliers)}
    except SQLAlchemyError as e:
        raise database_error(e)

# 更新供應商
def update_supplier(db: Session, supplier_id: int, supplier: SupplierUpdate, current_user: User):
    try:
        db_supplier = get_supplier_by_id(db, supplier_id)
        for key, value in supplier.model_dump().items():
            setattr(db_supplier, key, value)
        db_supplier.updated_by = current_user.id
        db_supplier.updated_at = datetime.now()
        db.commit()
        db.refresh(db_supplier)
        return db_supplier
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 刪除供應商，引用它的產品 supplier_id 變為 null
def delete_supplier(db: Session, supplier_id: int):
    try:
        db_supplier = get_supplier_by_id(db, supplier_id)
        db.query(Product).filter(Product.supplier_id == supplier_id).update(
            {Product.supplier_id: None}, synchronize_session="fetch"
        )
        db.delete(db_supplier)
        db.commit()
        return SuccessResponse(message="供應商刪除成功")
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

def _resolve_supplier(db: Session, supplier_id: Optional[int]):
    if supplier_id is None:
        return None
    return get_supplier_by_id(db, supplier_id)

def _build_variants(variants, current_user: User) -> List[ProductType]:
    return [
        ProductType(
            size=variant.size,
            price=variant.price,
            stock=variant.stock,
            created_by=current_user.id
        ) for variant in variants
    ]

# 產品新增，產品與規格在同一個交易內寫入
def create_product(db: Session, product: ProductCreate, current_user: User):
    try:
        supplier = _resolve_supplier(db, product.supplier_id)
        db_product = Product(
            **product.model_dump(exclude={"supplier_id", "product_type"}),
            supplier=supplier,
            created_by=current_user.id
        )
        db_product.product_types = _build_variants(product.product_type, current_user)
        db.add(db_product)
        db.commit()
        db.refresh(db_product)
        logger.info("product %s created with %d variants", db_product.id, len(db_product.product_types))
        return db_product
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 查詢單一產品
def get_product_by_id(db: Session, product_id: int):
    try:
        product = (
            db.query(Product)
            .options(joinedload(Product.supplier), selectinload(Product.product_types))
            .filter(Product.id == product_id)
            .first()
        )
        if not product:
            raise not_found("PRODUCT_NOT_FOUND", f"產品ID:{product_id}不存在")
        return product
    except SQLAlchemyError as e:
        raise database_error(e)

# 查詢產品清單
def get_product_list(db: Session):
    try:
        products = (
            db.query(Product)
            .options(joinedload(Product.supplier), selectinload(Product.product_types))
            .order_by(Product.created_at.desc(), Product.id.desc())
            .all()
        )
        return {"product": products, "total": len(products)}
    except SQLAlchemyError as e:
        raise database_error(e)

# 查詢某產品目前的規格
def get_product_types(db: Session, product_id: int):
    try:
        return db.query(ProductType).filter(ProductType.product_id == product_id).order_by(ProductType.id).all()
    except SQLAlchemyError as e:
        raise database_error(e)

# 更新產品：欄位整筆覆寫，規格整組替換（不合併），一次 commit
def update_product(db: Session, product_id: int, product: ProductUpdate, current_user: User):
    try:
        db_product = get_product_by_id(db, product_id)
        supplier = _resolve_supplier(db, product.supplier_id)
        for key, value in product.model_dump(exclude={"supplier_id", "product_type"}).items():
            setattr(db_product, key, value)
        db_product.supplier = supplier
        db_product.updated_by = current_user.id
        db_product.updated_at = datetime.now()
        # delete-orphan 會在同一次 flush 刪除舊規格
        db_product.product_types = _build_variants(product.product_type, current_user)
        db.commit()
        db.refresh(db_product)
        logger.info("product %s variants replaced (%d)", product_id, len(db_product.product_types))
        return db_product
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 刪除產品，連同規格
def delete_product(db: Session, product_id: int):
    try:
        db_product = get_product_by_id(db, product_id)
        db.delete(db_product)
        db.commit()
        return SuccessResponse(message="產品刪除成功")
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 查詢單一產品規格
def get_product_type_by_id(db: Session, product_type_id: int):
    try:
        product_type = (
            db.query(ProductType)
            .options(joinedload(ProductType.product).joinedload(Product.supplier))
            .filter(ProductType.id == product_type_id)
            .first()
        )
        if not product_type:
            raise not_found("PRODUCT_TYPE_NOT_FOUND", f"產品規格ID:{product_type_id}不存在")
        return product_type
    except SQLAlchemyError as e:
        raise database_error(e)

# 查詢產品規格清單，可依產品篩選
def get_product_type_list(db: Session, product_id: Optional[int] = None):
    try:
        query = db.query(ProductType).options(joinedload(ProductType.product).joinedload(Product.supplier))
        if product_id is not None:
            query = query.filter(ProductType.product_id == product_id)
        product_types = query.order_by(ProductType.created_at.desc(), ProductType.id.desc()).all()
        return {"product_type": product_types, "total": len(product_types)}
    except SQLAlchemyError as e:
        raise database_error(e)

# 單獨新增一個規格到既有產品
def create_product_type(db: Session, product_type: ProductTypeCreate, current_user: User):
    try:
        product = get_product_by_id(db, product_type.product_id)
        db_product_type = ProductType(
            **product_type.model_dump(exclude={"product_id"}),
            product=product,
            created_by=current_user.id
        )
        db.add(db_product_type)
        db.commit()
        db.refresh(db_product_type)
        return db_product_type
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 更新單一規格，不影響同產品的其它規格
def update_product_type(db: Session, product_type_id: int, product_type: VariantUpdate, current_user: User):
    try:
        db_product_type = get_product_type_by_id(db, product_type_id)
        for key, value in product_type.model_dump().items():
            setattr(db_product_type, key, value)
        db_product_type.updated_by = current_user.id
        db_product_type.updated_at = datetime.now()
        db.commit()
        db.refresh(db_product_type)
        return db_product_type
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

def delete_product_type(db: Session, product_type_id: int):
    try:
        db_product_type = get_product_type_by_id(db, product_type_id)
        db.delete(db_product_type)
        db.commit()
        return SuccessResponse(message="產品規格刪除成功")
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 交易新增，grandtotal 只在寫入時計算
def create_transaction(db: Session, transaction: TransactionCreate, current_user: User):
    try:
        product_type = get_product_type_by_id(db, transaction.product_type_id)
        user = get_user_by_id(db, transaction.user_id)
        db_transaction = Transaction(
            **transaction.model_dump(exclude={"product_type_id", "user_id"}),
            product_type=product_type,
            user=user,
            grandtotal=transaction.subtotal * transaction.qty,
            created_by=current_user.id
        )
        db.add(db_transaction)
        db.commit()
        db.refresh(db_transaction)
        logger.info("transaction %s created, grandtotal=%s", db_transaction.id, db_transaction.grandtotal)
        return db_transaction
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

def _transaction_query(db: Session):
    return db.query(Transaction).options(
        joinedload(Transaction.product_type).joinedload(ProductType.product).joinedload(Product.supplier),
        joinedload(Transaction.user),
    )

# 查詢單一交易（已軟刪除的也會回傳）
def get_transaction_by_id(db: Session, transaction_id: int):
    try:
        transaction = _transaction_query(db).filter(Transaction.id == transaction_id).first()
        if not transaction:
            raise not_found("TRANSACTION_NOT_FOUND", f"交易ID:{transaction_id}不存在")
        return transaction
    except SQLAlchemyError as e:
        raise database_error(e)

# 查詢交易清單，不過濾 deleted_at
def get_transaction_list(db: Session):
    try:
        transactions = _transaction_query(db).order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()
        return {"transaction": transactions, "total": len(transactions)}
    except SQLAlchemyError as e:
        raise database_error(e)

# 更新交易，只接受白名單欄位
def update_transaction(db: Session, transaction_id: int, transaction: TransactionUpdate, current_user: User):
    try:
        db_transaction = get_transaction_by_id(db, transaction_id)
        update_data = transaction.model_dump(exclude_unset=True, exclude_none=True)
        if "product_type_id" in update_data:
            db_transaction.product_type = get_product_type_by_id(db, update_data.pop("product_type_id"))
        if "user_id" in update_data:
            db_transaction.user = get_user_by_id(db, update_data.pop("user_id"))
        for key, value in update_data.items():
            setattr(db_transaction, key, value)
        if "qty" in update_data or "subtotal" in update_data:
            db_transaction.grandtotal = db_transaction.subtotal * db_transaction.qty
        db_transaction.updated_by = current_user.id
        db_transaction.updated_at = datetime.now()
        db.commit()
        db.refresh(db_transaction)
        return db_transaction
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 軟刪除：只標記 deleted_at/deleted_by，紀錄仍可查詢
def delete_transaction(db: Session, transaction_id: int, current_user: User):
    try:
        db_transaction = get_transaction_by_id(db, transaction_id)
        db_transaction.deleted_at = datetime.now()
        db_transaction.deleted_by = current_user.id
        db.commit()
        return SuccessResponse(message="交易刪除成功")
    except SQLAlchemyError as e:
        db.rollback()
        raise database_error(e)

# 儀表板摘要，一次查詢算完四個數字
def get_dashboard_summary(db: Session, now: Optional[datetime] = None):
    try:
        today = (now or datetime.now()).replace(hour=0, minute=0, second=0, microsecond=0)
        tomorrow = today + timedelta(days=1)
        is_today = and_(Product.created_at >= today, Product.created_at < tomorrow)
        variant_price = select(func.coalesce(func.sum(ProductType.price), 0)).scalar_subquery()
        stmt = select(
            func.count(Product.id),
            variant_price,
            func.coalesce(func.sum(case((is_today, 1), else_=0)), 0),
            func.coalesce(func.sum(case((and_(is_today, Product.status == COMPLETED_STATUS), 1), else_=0)), 0),
        ).select_from(Product)
        total_count, total_price, today_count, success_today = db.execute(stmt).one()
        return DashboardSummary(
            total_product_count=total_count or 0,
            total_product_price=total_price or 0,
            today_product_count=today_count or 0,
            success_product_count_today=success_today or 0,
        )
    except SQLAlchemyError as e:
        raise database_error(e)

def admin_user(current_user: User = Depends(get_current_user)):
    if current_user.role != UserRole.admin:
        raise HTTPException(status_code=403, detail=error_response("403_FORBIDDEN", "僅管理員可以做更動"))
    return current_user

def admin_warehouse(current_user: User = Depends(get_current_user)):
    if current_user.role not in [UserRole.admin, UserRole.warehouse]:
        raise HTTPException(status_code=403, detail=error_response("403_FORBIDDEN", "僅管理員或倉庫人員可以做更動"))
    return current_user
