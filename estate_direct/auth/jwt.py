from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ..config import SessionLocal, settings
from ..models.models import User

# Tokens are issued by the identity service; this API only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    """Mint a token the way the identity service does. Used by scripts and tests."""
    claims = {"type": "access", **data}
    claims["exp"] = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    if settings.jwt_issuer:
        claims.setdefault("iss", settings.jwt_issuer)
    if settings.jwt_audience:
        claims.setdefault("aud", settings.jwt_audience)
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    options = {"verify_aud": bool(settings.jwt_audience)}
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options=options,
    )


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _user_id_from_claims(claims: Dict[str, Any]) -> Optional[int]:
    if claims.get("type", "access") != "access":
        return None
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        return None


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        user_id = _user_id_from_claims(decode_token(token))
    except JWTError:
        raise unauthorized
    if user_id is None:
        raise unauthorized

    # Buyers and sellers are the same kind of account; party checks happen per offer or transaction.
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise unauthorized
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Platform staff only: manual fee settlement and refunds."""
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operation not permitted for your role")
    return user
