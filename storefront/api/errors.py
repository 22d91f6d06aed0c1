"""Exception handlers rendering every failure as ``{"success": false, "error": ...}``."""

from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core import get_logger
from storefront.core_settings import Settings
from storefront.domain.errors import GatewayRequestError, StorefrontError

logger = get_logger(__name__)

LOCATION_PREFIXES = ("body", "query", "path", "header")


def validation_details(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    details = []
    for error in errors:
        loc = list(error.get("loc", ()))
        if loc and loc[0] in LOCATION_PREFIXES:
            loc = loc[1:]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"field": ".".join(str(part) for part in loc) or "body", "message": message})
    return details


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error(
                f"{type(exc).__name__}: {exc.message}",
                extra={'extra_fields': {'path': request.url.path, 'error_class': type(exc).__name__}}
            )
        content: Dict[str, Any] = {"success": False, "error": exc.message}
        if exc.details:
            content["details"] = exc.details
        if isinstance(exc, GatewayRequestError) and exc.code:
            content["code"] = exc.code
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Validation failed",
                "details": validation_details(exc.errors()),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return JSONResponse(
                status_code=404,
                content={"success": False, "error": "Endpoint not found", "path": request.url.path},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        message = "Internal server error" if settings.is_production else (str(exc) or "Internal server error")
        return JSONResponse(status_code=500, content={"success": False, "error": message})
