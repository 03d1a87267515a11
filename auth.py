import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.errors import DuplicateKeyError

from database import db, create_document, now, serialize, to_object_id
from schemas import Role, User

logger = logging.getLogger(__name__)

# Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 30))

ADMIN_EMAIL = (os.getenv("ADMIN_EMAIL") or "").lower()
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Store Admin")

NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]{2,50}$")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

router = APIRouter(prefix="/auth", tags=["auth"])


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


class RegisterPayload(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        if value != value.strip() or "  " in value:
            raise ValueError("Name cannot have leading/trailing spaces or multiple consecutive spaces")
        if not NAME_PATTERN.match(value):
            raise ValueError("Name can only contain letters, spaces, hyphens, and apostrophes")
        return value


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


# Helper functions for auth

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def get_current_user(token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Token is not valid",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid, "is_active": True}) if oid else None
    if not user:
        raise credentials_exception
    return {"id": str(user["_id"]), "name": user["name"], "email": user["email"], "role": user["role"]}


def require_admin(user=Depends(get_current_user)):
    if user["role"] != Role.admin.value:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def seed_admin():
    """Create or promote the configured admin account."""
    if db is None or not ADMIN_EMAIL or not ADMIN_PASSWORD:
        return
    existing = db["user"].find_one({"email": ADMIN_EMAIL})
    if existing:
        db["user"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"role": Role.admin.value, "is_active": True, "updated_at": now()}},
        )
        return
    admin = User(
        name=ADMIN_NAME,
        email=ADMIN_EMAIL,
        password_hash=get_password_hash(ADMIN_PASSWORD),
        role=Role.admin,
    )
    create_document("user", admin)
    logger.info("Seeded admin account %s", ADMIN_EMAIL)


@router.post("/register", status_code=201, response_model=Token)
def register(payload: RegisterPayload):
    email = str(payload.email).lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(400, "User already exists")
    user = User(name=payload.name, email=email, password_hash=get_password_hash(payload.password))
    try:
        uid = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(400, "User already exists")
    access_token = create_access_token(data={"sub": uid, "role": Role.customer.value})
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": {"id": uid, "name": user.name, "email": email, "role": Role.customer.value},
    }


@router.post("/login", response_model=Token)
def login(payload: LoginPayload):
    user = db["user"].find_one({"email": str(payload.email).lower(), "is_active": True})
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    uid = str(user["_id"])
    access_token = create_access_token(data={"sub": uid, "role": user["role"]})
    return {"access_token": access_token, "token_type": "bearer", "user": serialize(user)}


@router.get("/me")
def me(user=Depends(get_current_user)):
    return {"success": True, "user": user}
