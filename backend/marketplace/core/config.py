"""
Centralized application configuration
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from the environment / .env"""

    # API Settings
    API_TITLE: str = "Marketplace API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Marketplace backend services"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_DEBUG: bool = False

    # Database
    DATABASE_URL: str = ""
    DB_CONNECT_TIMEOUT: int = 10

    # Cache
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 5.0
    CACHE_ENABLED: bool = True

    # Email (SMTP)
    EMAIL_HOST: str = "localhost"
    EMAIL_PORT: int = 587
    EMAIL_USER: str = ""
    EMAIL_PASSWORD: str = ""
    EMAIL_USE_TLS: bool = True
    EMAIL_FROM: str = "noreply@marketplace.local"
    EMAIL_MAX_ATTEMPTS: int = 3
    STORE_NAME: str = "Marketplace"
    FRONTEND_URL: str = "http://localhost:3000"

    # Currency
    EXCHANGE_RATE_API_URL: str = "https://api.exchangerate-api.com/v4/latest"
    HTTP_TIMEOUT: float = 10.0

    # Files
    EXPORT_DIR: str = "/tmp/marketplace/exports"
    REPORTS_DIR: str = "/tmp/marketplace/reports"

    # Vendors
    DEFAULT_COMMISSION_RATE: float = 10.0
    MINIMUM_PAYOUT_AMOUNT: float = 50.0

    # Scheduler
    SCHEDULER_ENABLED: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS - comma-separated or JSON array
    ALLOWED_ORIGINS: Optional[str] = "http://localhost:3000"

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        if not self.ALLOWED_ORIGINS:
            return ["http://localhost:3000"]

        import json
        try:
            origins = json.loads(self.ALLOWED_ORIGINS)
            if isinstance(origins, list):
                return origins
        except (json.JSONDecodeError, ValueError):
            pass

        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
