"""
Manuflix Checkout Configuration
Loads settings from .env file using Pydantic v2 with BaseSettings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==================== Project Info ====================
    PROJECT_NAME: str = "Manuflix Checkout API"
    PROJECT_DESCRIPTION: str = "Subscription plans, PIX checkout and payment confirmation"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"

    # ==================== PushinPay Configuration ====================
    PUSHINPAY_API_URL: str = "https://api.pushinpay.com.br/v1"
    PUSHINPAY_TOKEN: str = ""
    PUSHINPAY_TIMEOUT: float = 10.0
    PUSHINPAY_WEBHOOK_SECRET: str = ""

    # ==================== PIX Checkout ====================
    PIX_EXPIRATION_SECONDS: int = 3600  # 1 hour, shared by gateway and countdown
    POLL_INTERVAL_SECONDS: float = 10.0
    COUNTDOWN_TICK_SECONDS: float = 1.0
    BACKEND_URL: str = "http://localhost:8000"

    # ==================== Supabase Configuration ====================
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUDIENCE: str = "authenticated"

    # ==================== Database (local fallback store) ====================
    DATABASE_URL: str = "sqlite:///manuflix_local.db"

    # ==================== CORS & Frontend ====================
    FRONTEND_URL: str = "http://localhost:5173"
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # ==================== Server Configuration ====================
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ==================== Features ====================
    DEBUG: bool = False
    TESTING: bool = False
    LOG_LEVEL: str = "INFO"

    # ==================== Configuration Loading ====================
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",
        validate_default=True,
    )

    # ==================== Properties ====================
    @property
    def supabase_enabled(self) -> bool:
        """Supabase is the store whenever its URL and key are both set"""
        return bool(self.SUPABASE_URL and self.SUPABASE_KEY)

    @property
    def webhook_callback_url(self) -> str:
        """Public URL PushinPay notifies when a charge changes status"""
        return f"{self.BACKEND_URL.rstrip('/')}{self.API_PREFIX}/webhooks/pushinpay"

    def missing_required(self) -> List[str]:
        """Names of required settings that are empty"""
        required = {
            "PUSHINPAY_TOKEN": self.PUSHINPAY_TOKEN,
            "SUPABASE_JWT_SECRET": self.SUPABASE_JWT_SECRET,
        }
        return [name for name, value in required.items() if not value]


# ==================== Settings Singleton ====================
@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

