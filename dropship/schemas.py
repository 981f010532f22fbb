from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from dropship.models import UserRole

def round_money(value):
    decimal_value = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(decimal_value)

# 簡要模型
class SupplierShort(BaseModel):
    id: int
    name: str
    model_config = {"from_attributes": True}

class ProductShort(BaseModel):
    id: int
    name: str
    color: str
    images: List[str] = []
    supplier: Optional[SupplierShort] = None
    model_config = {"from_attributes": True}

# 不含密碼的使用者投影，交易回應只用這個
class UserShort(BaseModel):
    id: int
    name: str
    outlet_name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    model_config = {"from_attributes": True}

# 使用者
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    outlet_name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: UserRole = UserRole.dropshipper

class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    outlet_name: Optional[str] = Field(None, min_length=1, max_length=255)
    address: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8)
    role: Optional[UserRole] = None

class UserResponse(UserShort):
    address: Optional[str] = None
    created_at: datetime
    created_by: Optional[int] = None
    updated_at: Optional[datetime] = None

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

class LoginResponse(Token):
    user: UserResponse

class TokenData(BaseModel):
    user_id: int
    role: str

# 供應商
class SupplierBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=1, max_length=20)
    email: EmailStr
    model_config = {"from_attributes": True}

class SupplierCreate(SupplierBase):
    pass

class SupplierUpdate(SupplierBase):
    pass

class SupplierResponse(SupplierBase):
    id: int
    email: str
    created_at: datetime
    created_by: Optional[int] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None

# 產品規格
class VariantCreate(BaseModel):
    size: str = Field(..., min_length=1, max_length=255)
    price: float = Field(..., gt=0)
    stock: int = Field(..., ge=0)

    @field_validator("price")
    def validate_price_precision(cls, value):
        return round_money(value)

# 更新時庫存必須大於0，與新增不同
class VariantUpdate(VariantCreate):
    stock: int = Field(..., gt=0)

# 單獨新增規格時要指定所屬產品
class ProductTypeCreate(VariantCreate):
    product_id: int

class ProductTypeResponse(BaseModel):
    id: int
    size: str
    price: float
    stock: int
    model_config = {"from_attributes": True}

class ProductTypeDetail(ProductTypeResponse):
    product_id: int
    product: Optional[ProductShort] = None

# 產品
class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    color: str = Field(..., min_length=1, max_length=255)
    images: List[str] = []
    status: Optional[str] = Field(None, max_length=50)

class ProductCreate(ProductBase):
    supplier_id: Optional[int] = None
    product_type: List[VariantCreate] = []

class ProductUpdate(ProductBase):
    # 整筆覆寫，supplier_id 必須明確給出（可為 null）
    supplier_id: Optional[int] = Field(...)
    product_type: List[VariantUpdate]

class ProductResponse(BaseModel):
    id: int
    name: str
    color: str
    images: List[str] = []
    status: Optional[str] = None
    supplier: Optional[SupplierShort] = None
    total_stock: int = 0
    product_type: List[ProductTypeResponse] = []
    created_at: datetime
    created_by: Optional[int] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None
    model_config = {"from_attributes": True}

    @classmethod
    def model_validate(cls, obj):
        data = super().model_validate(obj).__dict__
        data["product_type"] = [ProductTypeResponse.model_validate(t) for t in obj.product_types]
        data["total_stock"] = sum(t.stock for t in obj.product_types)
        return cls(**data)

# 交易
class TransactionCreate(BaseModel):
    product_type_id: int
    qty: int = Field(..., gt=0)
    subtotal: float = Field(..., ge=0)
    user_id: int

    @field_validator("subtotal")
    def validate_subtotal_precision(cls, value):
        return round_money(value)

# 只允許更新這些欄位，其它欄位一律拒絕
class TransactionUpdate(BaseModel):
    product_type_id: Optional[int] = None
    qty: Optional[int] = Field(None, gt=0)
    subtotal: Optional[float] = Field(None, ge=0)
    user_id: Optional[int] = None
    model_config = {"extra": "forbid"}

    @field_validator("subtotal")
    def validate_subtotal_precision(cls, value):
        if value is None:
            return value
        return round_money(value)

class TransactionResponse(BaseModel):
    id: int
    product_type_id: Optional[int] = None
    qty: int
    subtotal: float
    grandtotal: float
    user_id: Optional[int] = None
    product_type: Optional[ProductTypeDetail] = None
    user: Optional[UserShort] = None
    created_at: datetime
    created_by: Optional[int] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[int] = None
    model_config = {"from_attributes": True}

# 儀表板
class DashboardSummary(BaseModel):
    total_product_count: int = 0
    total_product_price: float = 0
    today_product_count: int = 0
    success_product_count_today: int = 0

class DashboardResponse(BaseModel):
    success: bool = True
    data: DashboardSummary

# 成功回應
class SuccessResponse(BaseModel):
    success: bool = True
    message: str

# 清單回應
class ProductListResponse(BaseModel):
    success: bool = True
    product: List[ProductResponse]
    total: int

class SupplierListResponse(BaseModel):
    success: bool = True
    supplier: List[SupplierResponse]
    total: int

class TransactionListResponse(BaseModel):
    success: bool = True
    transaction: List[TransactionResponse]
    total: int

class UserListResponse(BaseModel):
    success: bool = True
    user: List[UserResponse]
    total: int

class ProductTypeListResponse(BaseModel):
    success: bool = True
    product_type: List[ProductTypeDetail]
    total: int
