from .auth import router as auth_router
from .orders import router as orders_router
from .payments import router as payments_router

__all__ = ["auth_router", "orders_router", "payments_router"]
