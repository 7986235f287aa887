from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # MongoDB Configuration
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "bookstore_db"

    # JWT Configuration
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours

    # Cart rules
    CART_TTL_DAYS: int = 30
    CART_MAX_ITEM_QUANTITY: int = 10
    PRICE_TOLERANCE: float = 0.01
    CART_WRITE_ATTEMPTS: int = 5

    # Checkout summary
    TAX_RATE: float = 0.08
    FREE_SHIPPING_THRESHOLD: float = 50.0
    SHIPPING_FEE: float = 5.99

    # Application Settings
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Bookstore"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
