from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables can come from:
    - docker-compose.yml environment section
    - .env file (for secrets like RECAPTCHA_SECRET_KEY, ADMIN_SECRET)
    - System environment

    Variable names match docker-compose conventions:
    - POSTGRES_HOST, POSTGRES_PORT, etc. (for database)
    - REDIS_URL (shared admission store; empty = local store only)
    """

    # Environment
    environment: str = "development"

    # PostgreSQL (from docker-compose)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "acceptance_user"
    postgres_password: str = "acceptance_pass"
    postgres_db: str = "acceptance"
    database_url: Optional[str] = Field(default=None, validate_default=True)

    # Redis (shared admission store)
    redis_url: str = ""
    admission_store_timeout_ms: int = 50

    # Abuse gate (reCAPTCHA v3)
    recaptcha_secret_key: str = ""
    captcha_min_score: float = 0.5
    captcha_api_timeout_seconds: float = 5.0
    captcha_fail_mode: str = "open"
    captcha_fallback_tier: str = "captcha_fallback"
    honeypot_field: str = "website"

    # Identity derivation (client address / contact hashed with this salt)
    identity_salt: str = ""
    trust_forwarded_for: bool = True

    # Claim lifecycle
    verification_ttl_days: int = 180
    sybil_window_days: int = 30

    # Admin + retention
    admin_secret: str = ""
    retention_interval_seconds: int = 3600
    retention_batch_size: int = 1000

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('captcha_fail_mode', mode='before')
    @classmethod
    def normalize_fail_mode(cls, v):
        """Only 'open' and 'closed' are meaningful, anything else means open"""
        v = (v or "open").strip().lower()
        return v if v in ("open", "closed") else "open"

    @field_validator('database_url', mode='before')
    @classmethod
    def construct_database_url(cls, v, info):
        """Construct database URL from components if not explicitly set"""
        if v:
            return v

        data = info.data
        host = data.get('postgres_host', 'localhost')
        port = data.get('postgres_port', 5432)
        user = data.get('postgres_user', 'acceptance_user')
        password = data.get('postgres_password', 'acceptance_pass')
        db = data.get('postgres_db', 'acceptance')

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
