from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List

REQUIRED_ENV_VARS = ["RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET"]
OPTIONAL_ENV_VARS = [
    "PORT",
    "ENVIRONMENT",
    "ALLOWED_ORIGINS",
    "DATABASE_URL",
    "REDIS_URL",
    "RESEND_API_KEY",
    "ADMIN_EMAIL",
]

class Settings(BaseSettings):
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    PORT: int = 5000
    LOG_LEVEL: str = "INFO"

    # Payment gateway (secrets are only ever read from the environment)
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    DEFAULT_CURRENCY: str = "INR"

    # Datastore; empty means "order number only" mode
    DATABASE_URL: str = ""

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    REDIS_URL: str = ""

    # Notifications
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com/emails"
    ADMIN_EMAIL: str = "admin@mystamoura.com"
    ORDER_EMAIL_FROM: str = "Mystamoura <orders@mystamoura.com>"
    STORE_NAME: str = "Mystamoura"
    ADMIN_ORDERS_URL: str = "https://mystamoura.com/admin/orders"

    # Admin auth
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = ""
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 60

    ORDER_NUMBER_PREFIX: str = "MYS"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 5

    class Config:
        env_file = ".env"

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def gateway_configured(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID.strip() and self.RAZORPAY_KEY_SECRET.strip())

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

@lru_cache
def get_settings() -> Settings:
    return Settings()
