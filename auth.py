import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from pymongo.database import Database

from database import get_db

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
TOKEN_EXPIRE = timedelta(hours=24)


def create_token(email: str, extra: Optional[dict] = None) -> str:
    payload = {**(extra or {}), "email": email, "exp": datetime.now(timezone.utc) + TOKEN_EXPIRE}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def verify_token(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise HTTPException(status_code=401, detail="unauthorized!")
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="unauthorized!")
    if not payload.get("email"):
        raise HTTPException(status_code=401, detail="unauthorized!")
    return payload


def verify_admin(decoded: dict = Depends(verify_token), db: Database = Depends(get_db)) -> dict:
    # role is read fresh on every call, never trusted from the token
    user = db["users"].find_one({"email": decoded["email"]})
    if not user or user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="forbidden!")
    return user


def is_admin(db: Database, email: Optional[str]) -> bool:
    if not email:
        return False
    user = db["users"].find_one({"email": email}, {"role": 1})
    return bool(user) and user.get("role") == "admin"
