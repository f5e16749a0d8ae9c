import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./truck_logbook.db")
    session_secret: str = os.getenv("SESSION_SECRET", "default-dev-secret-change-in-production")

    @property
    def secret_key(self) -> str:
        """JWT access token signing key"""
        return self.session_secret

    algorithm: str = "HS256"
    access_token_expire_minutes: int = 1440

    # Outbound webhook (n8n or any JSON consumer). Empty disables delivery.
    webhook_url: str = ""
    webhook_timeout_seconds: float = 5.0
    webhook_max_workers: int = 4

    # Trip scheduling
    min_trip_interval_hours: float = 3.0
    upcoming_trip_window_minutes: int = 60

    # Financial alerts
    profit_low_threshold_percent: float = 10.0
    expense_high_threshold: float = 5000.0
    allow_expense_refunds: bool = False

    default_diesel_price: float = 0.0
    default_company_name: str = "Truck Logbook"

    cors_origins: list = ["*"]

    class Config:
        env_file = ".env"

settings = Settings()
