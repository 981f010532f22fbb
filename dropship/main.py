from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from typing import Optional
from dropship.database import get_db, Base, engine
from dropship.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse,
    SupplierCreate, SupplierUpdate, SupplierResponse, SupplierListResponse,
    TransactionCreate, TransactionUpdate, TransactionResponse, TransactionListResponse,
    UserCreate, UserUpdate, UserResponse, UserListResponse, Token, LoginResponse,
    ProductTypeCreate, VariantUpdate, ProductTypeDetail, ProductTypeListResponse,
    DashboardResponse, SuccessResponse
)
from dropship.crud import (
    create_product, get_product_by_id, get_product_list, update_product, delete_product,
    create_product_type, get_product_type_by_id, get_product_type_list, update_product_type, delete_product_type,
    create_supplier, get_supplier_by_id, get_supplier_list, update_supplier, delete_supplier,
    create_transaction, get_transaction_by_id, get_transaction_list, update_transaction, delete_transaction,
    create_user, authenticate_user, get_user_by_id, get_user_list, update_user, delete_user,
    get_dashboard_summary, admin_user, admin_warehouse, error_response
)
from dropship.auth import (
    get_current_user, get_password_hasher, get_token_service, refresh_access_token,
    PasswordHasher, TokenService
)
from dropship.models import User
import asyncio
import logging
import os

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", 30))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Dropship Inventory API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 每個請求都有時間上限
# 逾時只會先回 504，同步路由仍在 threadpool 裡跑完，已開始的交易照常 commit 或 rollback
@app.middleware("http")
async def request_timeout(request: Request, call_next):
    try:
        return await asyncio.wait_for(call_next(request), timeout=REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("request timed out: %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=504,
            content={"detail": error_response("REQUEST_TIMEOUT", "請求逾時")},
        )

# 輸入驗證錯誤統一回 400
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    detail = error_response("VALIDATION_ERROR", "輸入資料驗證失敗")
    detail["details"] = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
    return JSONResponse(status_code=400, content={"detail": detail})

# 使用者
@app.post("/user/register", response_model=UserResponse)
def register_api(user: UserCreate, db: Session = Depends(get_db), hasher: PasswordHasher = Depends(get_password_hasher)):
    return create_user(db, user, hasher)

@app.post("/user/login", response_model=LoginResponse)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenService = Depends(get_token_service),
):
    user = authenticate_user(db, form_data.username, form_data.password, hasher)
    logger.info("user %s logged in", user.id)
    return {**tokens.issue(user), "user": UserResponse.model_validate(user)}

@app.post("/user/refresh", response_model=Token)
def refresh_token(refresh_token: str, db: Session = Depends(get_db), tokens: TokenService = Depends(get_token_service)):
    return refresh_access_token(refresh_token, db, tokens)

@app.get("/user/me", response_model=UserResponse)
def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user

@app.get("/user/list", response_model=UserListResponse)
def list_user(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_user_list(db)

@app.get("/user/{id}", response_model=UserResponse)
def read_user(id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_user_by_id(db, id)

@app.put("/user/{id}", response_model=UserResponse)
def update_user_api(
    id: int,
    user: UserUpdate,
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    current_user: User = Depends(get_current_user),
):
    return update_user(db, id, user, hasher, current_user)

@app.delete("/user/delete/{id}", response_model=SuccessResponse)
def delete_user_api(id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_user)):
    return delete_user(db, id)

# 供應商
@app.post("/supplier", response_model=SupplierResponse)
def create_supplier_api(supplier: SupplierCreate, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return create_supplier(db, supplier, current_user)

@app.get("/supplier/list", response_model=SupplierListResponse)
def list_supplier(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_supplier_list(db)

@app.get("/supplier/{id}", response_model=SupplierResponse)
def read_supplier(id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_supplier_by_id(db, id)

@app.put("/supplier/update/{id}", response_model=SupplierResponse)
def update_supplier_api(id: int, supplier: SupplierUpdate, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return update_supplier(db, id, supplier, current_user)

@app.delete("/supplier/delete/{id}", response_model=SuccessResponse)
def delete_supplier_api(id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return delete_supplier(db, id)

# 產品
@app.post("/product", response_model=ProductResponse)
def create_product_api(product: ProductCreate, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return ProductResponse.model_validate(create_product(db, product, current_user))

@app.get("/product/list", response_model=ProductListResponse)
def list_product(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    result = get_product_list(db)
    return ProductListResponse(
        success=True,
        product=[ProductResponse.model_validate(product) for product in result["product"]],
        total=result["total"]
    )

@app.get("/product/{id}", response_model=ProductResponse)
def read_product(id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return ProductResponse.model_validate(get_product_by_id(db, id))

@app.put("/product/update/{id}", response_model=ProductResponse)
def update_product_api(id: int, product: ProductUpdate, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return ProductResponse.model_validate(update_product(db, id, product, current_user))

@app.delete("/product/delete/{id}", response_model=SuccessResponse)
def delete_product_api(id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return delete_product(db, id)

# 產品規格
@app.post("/product-type", response_model=ProductTypeDetail)
def create_product_type_api(product_type: ProductTypeCreate, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return create_product_type(db, product_type, current_user)

@app.get("/product-type/list", response_model=ProductTypeListResponse)
def list_product_type(product_id: Optional[int] = None, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_product_type_list(db, product_id)

@app.get("/product-type/{id}", response_model=ProductTypeDetail)
def read_product_type(id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_product_type_by_id(db, id)

@app.put("/product-type/update/{id}", response_model=ProductTypeDetail)
def update_product_type_api(id: int, product_type: VariantUpdate, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return update_product_type(db, id, product_type, current_user)

@app.delete("/product-type/delete/{id}", response_model=SuccessResponse)
def delete_product_type_api(id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_warehouse)):
    return delete_product_type(db, id)

# 交易
@app.post("/transaction", response_model=TransactionResponse, status_code=201)
def create_transaction_api(transaction: TransactionCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return create_transaction(db, transaction, current_user)

@app.get("/transaction/list", response_model=TransactionListResponse)
def list_transaction(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_transaction_list(db)

@app.get("/transaction/{id}", response_model=TransactionResponse)
def read_transaction(id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return get_transaction_by_id(db, id)

@app.put("/transaction/{id}", response_model=TransactionResponse)
def update_transaction_api(id: int, transaction: TransactionUpdate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return update_transaction(db, id, transaction, current_user)

@app.delete("/transaction/{id}", response_model=SuccessResponse)
def delete_transaction_api(id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return delete_transaction(db, id, current_user)

# 儀表板
@app.get("/dashboard/summary", response_model=DashboardResponse)
def dashboard_summary(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return DashboardResponse(data=get_dashboard_summary(db))

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
