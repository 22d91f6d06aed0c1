from fastapi import APIRouter, Depends, HTTPException
from storefront.application.schemas import TokenRequest, TokenResponse
from storefront.auth_local import authenticate_admin, create_access_token
from storefront.core import get_logger
from storefront.core_settings import Settings
from .deps import get_app_settings

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

@router.post("/token", response_model=TokenResponse)
def issue_token(payload: TokenRequest, settings: Settings = Depends(get_app_settings)):
    if not authenticate_admin(payload.username, payload.password, settings):
        logger.warning("Rejected admin login", extra={'extra_fields': {'username': payload.username}})
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=create_access_token(payload.username, settings))
