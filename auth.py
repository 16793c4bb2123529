from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from bson import ObjectId
from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import create_document, get_db, serialize
from errors import NotAuthenticated, PreconditionFailed
from schemas import LoginRequest, SignupRequest, User

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def create_token(user: dict) -> str:
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "exp": datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def _public_user(user: dict) -> dict:
    return {"id": str(user["_id"]), "email": user["email"], "full_name": user.get("full_name", "")}


def signup(db: Database, req: SignupRequest) -> dict:
    email = normalize_email(req.email)
    if db["user"].find_one({"email": email}):
        raise PreconditionFailed("Email already registered")
    user = User(full_name=req.full_name, email=email, password_hash=pwd_context.hash(req.password))
    user_id = create_document("user", user, database=db)
    created = db["user"].find_one({"_id": ObjectId(user_id)})
    logger.info("user_signed_up", user_id=user_id)
    return {"token": create_token(created), "user": _public_user(created)}


def login(db: Database, req: LoginRequest) -> dict:
    user = db["user"].find_one({"email": normalize_email(req.email)})
    if not user or not pwd_context.verify(req.password, user.get("password_hash", "")):
        raise NotAuthenticated("Invalid credentials")
    return {"token": create_token(user), "user": _public_user(user)}


def get_optional_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> Optional[dict]:
    """The signed-in user for a bearer token, or None when no token is sent."""
    if not authorization:
        return None
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise NotAuthenticated("Invalid token", redirect="/auth")
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise NotAuthenticated("Invalid token", redirect="/auth")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise NotAuthenticated("Invalid token user", redirect="/auth")
    user = serialize(user)
    user.pop("password_hash", None)
    return user


def get_current_user(user: Optional[dict] = Depends(get_optional_user)) -> dict:
    if not user:
        raise NotAuthenticated("User not authenticated", redirect="/auth")
    return user
