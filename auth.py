from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import settings
from database import Database, serialize, to_object_id
from errors import Forbidden, NotFound

# tokens are issued by the identity service; this app only verifies them
bearer = HTTPBearer(auto_error=False)


def create_access_token(subject: str, expires_minutes: Optional[int] = None) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode({"sub": subject, "exp": expires}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def get_db(request: Request) -> Database:
    return request.app.state.db


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _resolve_user(db: Database, token: str) -> dict:
    try:
        payload = decode_token(token)
    except JWTError:
        raise _unauthorized("Invalid token")
    uid = payload.get("sub")
    try:
        user = db.users.find_one({"_id": to_object_id(uid, "User")})
    except NotFound:
        user = None
    if not user:
        raise _unauthorized("User not found")
    if not user.get("is_active", True):
        raise _unauthorized("Account is deactivated")
    return serialize(user)


def protect(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Database = Depends(get_db),
) -> dict:
    if not credentials:
        raise _unauthorized("Not authorized, no token")
    return _resolve_user(db, credentials.credentials)


def optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Database = Depends(get_db),
) -> Optional[dict]:
    if not credentials:
        return None
    try:
        return _resolve_user(db, credentials.credentials)
    except HTTPException:
        return None


def require_admin(user: dict = Depends(protect)) -> dict:
    if user.get("role") != "admin":
        raise Forbidden("Admin role required")
    return user


def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") == "admin"
