from fastapi import HTTPException, Security, Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from sqlalchemy.orm import Session
from dropship.database import get_db
from dropship.models import User
from dropship.schemas import TokenData
import logging
import os
from dotenv import load_dotenv
from typing import Optional

load_dotenv()
logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 7))

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/user/login", auto_error=False)

class AuthError(Exception):
    pass

class PasswordHasher:
    def __init__(self, schemes=("bcrypt",)):
        self.context = CryptContext(schemes=list(schemes), deprecated="auto")

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        return self.context.verify(plain_password, hashed_password)

class TokenService:
    """簽發與驗證 JWT，payload 的 sub 是使用者 id，另帶 role 與 type。"""

    def __init__(self, secret_key: str, algorithm: str = ALGORITHM,
                 access_expire: timedelta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
                 refresh_expire: timedelta = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_expire = access_expire
        self.refresh_expire = refresh_expire

    def _encode(self, data: dict, token_type: str, expires_delta: timedelta):
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + expires_delta
        to_encode.update({"exp": expire, "type": token_type})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None):
        return self._encode(data, "access", expires_delta or self.access_expire)

    def create_refresh_token(self, data: dict):
        return self._encode(data, "refresh", self.refresh_expire)

    def decode(self, token: str, token_type: str = "access") -> TokenData:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise AuthError(str(e))
        user_id = payload.get("sub")
        role = payload.get("role")
        if user_id is None or role is None or payload.get("type") != token_type:
            raise AuthError("token payload incomplete")
        try:
            return TokenData(user_id=int(user_id), role=role)
        except ValueError:
            raise AuthError("invalid subject")

    def issue(self, user: User):
        data = {"sub": str(user.id), "role": user.role.value}
        return {
            "access_token": self.create_access_token(data),
            "refresh_token": self.create_refresh_token(data),
            "token_type": "bearer",
        }

@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher()

@lru_cache
def get_token_service() -> TokenService:
    return TokenService(SECRET_KEY)

def credentials_exception(error_code="INVALID_CREDENTIALS", message="無效的認證憑證"):
    return HTTPException(
        status_code=401,
        detail={"success": False, "error_code": error_code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )

def get_current_user(
    token: str = Security(oauth2_scheme),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    if not token:
        raise credentials_exception("NOT_AUTHENTICATED", "尚未登入")
    try:
        token_data = tokens.decode(token)
    except AuthError as e:
        logger.info("rejected token: %s", e)
        raise credentials_exception()
    user = db.query(User).filter(User.id == token_data.user_id).first()
    if user is None:
        raise credentials_exception()
    return user

def refresh_access_token(refresh_token: str, db: Session, tokens: TokenService):
    try:
        token_data = tokens.decode(refresh_token, token_type="refresh")
    except AuthError:
        raise credentials_exception("INVALID_TOKEN", "無效的 Refresh Token")
    user = db.query(User).filter(User.id == token_data.user_id).first()
    if user is None:
        raise credentials_exception("USER_NOT_FOUND", "使用者不存在")
    return tokens.issue(user)
