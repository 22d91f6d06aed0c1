from typing import Optional
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session
from storefront.application.checkout import CheckoutService
from storefront.application.notifications import NotificationDispatcher
from storefront.application.payments import PaymentVerificationService
from storefront.auth_local import decode_access_token
from storefront.core_settings import Settings
from storefront.domain.errors import DatabaseNotConfiguredError
from storefront.infrastructure.db import get_db
from storefront.infrastructure.email import ResendMailer
from storefront.infrastructure.gateway import RazorpayGateway

BEARER_PREFIX = "Bearer "

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings

def require_db(db: Optional[Session] = Depends(get_db)) -> Session:
    if db is None:
        raise DatabaseNotConfiguredError()
    return db

def get_gateway(settings: Settings = Depends(get_app_settings)) -> RazorpayGateway:
    return RazorpayGateway.from_settings(settings)

def get_mailer(settings: Settings = Depends(get_app_settings)) -> ResendMailer:
    return ResendMailer.from_settings(settings)

def get_dispatcher(
    mailer: ResendMailer = Depends(get_mailer),
    settings: Settings = Depends(get_app_settings),
) -> NotificationDispatcher:
    return NotificationDispatcher(mailer, settings)

def get_checkout_service(
    db: Optional[Session] = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    gateway: RazorpayGateway = Depends(get_gateway),
) -> CheckoutService:
    return CheckoutService(db, settings, gateway)

def get_verification_service(
    db: Optional[Session] = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    gateway: RazorpayGateway = Depends(get_gateway),
) -> PaymentVerificationService:
    return PaymentVerificationService(db, settings, gateway)

def _admin_claims(token: str, settings: Settings) -> Optional[dict]:
    token_data = decode_access_token(token, settings)
    if not token_data or token_data.get("role") != "admin":
        return None
    return token_data

def verify_token(request: Request, settings: Settings = Depends(get_app_settings)) -> dict:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = _admin_claims(auth_header.split(" ", 1)[1], settings)
    if token_data is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return token_data

def optional_admin(request: Request, settings: Settings = Depends(get_app_settings)) -> Optional[dict]:
    """Admin claims when a valid token is sent, otherwise None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    return _admin_claims(auth_header.split(" ", 1)[1], settings)
