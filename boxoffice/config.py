from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    database_url: str = "sqlite:///./boxoffice.db"
    secret_key: str = "dev-secret-key-change-in-production"
    algorithm: str = "HS256"

    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "usd"

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""

    frontend_url: str = "http://localhost:3000"

    reservation_ttl_hours: int = 24
    max_tickets_per_reservation: int = 10
    expiring_soon_minutes: int = 60

    scheduler_enabled: bool = True
    sweep_interval_minutes: int = 10

    rate_limit_reservations: str = "20/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "testserver"]

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
