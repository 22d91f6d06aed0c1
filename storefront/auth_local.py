import hmac
from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from .core_settings import Settings, get_settings

def create_access_token(subject: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "role": "admin",
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRES_MINUTES),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str, settings: Optional[Settings] = None) -> Optional[dict]:
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def authenticate_admin(username: str, password: str, settings: Optional[Settings] = None) -> bool:
    """Admin login is disabled while ADMIN_PASSWORD is unset."""
    settings = settings or get_settings()
    if not settings.ADMIN_PASSWORD:
        return False
    user_ok = hmac.compare_digest(username.encode("utf-8"), settings.ADMIN_USERNAME.encode("utf-8"))
    password_ok = hmac.compare_digest(password.encode("utf-8"), settings.ADMIN_PASSWORD.encode("utf-8"))
    return user_ok and password_ok
