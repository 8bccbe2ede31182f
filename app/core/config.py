from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "VOD Entitlements"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "vod_store"
    # Full URL wins over the POSTGRES_* parts (tests point this at sqlite+aiosqlite)
    DATABASE_URL: Optional[str] = None

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # JWT issued by the identity provider
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_CHECKOUT_PER_MINUTE: int = 20

    # PayHere checkout
    PAYHERE_MERCHANT_ID: str = ""
    PAYHERE_MERCHANT_SECRET: str = ""
    PAYHERE_CURRENCY: str = "LKR"
    PAYHERE_SANDBOX: bool = True
    PAYHERE_NOTIFY_URL: Optional[str] = None # Server-to-server confirmation endpoint

    # Storefront origin used to build return/cancel URLs
    FRONTEND_URL: str = "http://localhost:3000"

    @property
    def payhere_checkout_url(self) -> str:
        if self.PAYHERE_SANDBOX:
            return "https://sandbox.payhere.lk/pay/checkout"
        return "https://www.payhere.lk/pay/checkout"

    @property
    def payhere_configured(self) -> bool:
        return bool(self.PAYHERE_MERCHANT_ID.strip() and self.PAYHERE_MERCHANT_SECRET.strip())

settings = Settings()
