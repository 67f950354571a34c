"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


APP_ENVIRONMENTS = ("development", "staging", "production")


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Compliance Connect"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Feature flags
    ENABLE_MOCK_DATA: bool = False
    ENABLE_DEBUG_TOOLS: bool = False

    # API
    API_TIMEOUT: int = 30000  # milliseconds
    MAX_UPLOAD_SIZE: int = 5 * 1024 * 1024  # 5MB

    # Database
    POSTGRES_USER: str = "compliance"
    POSTGRES_PASSWORD: str = "compliance"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "compliance_connect"
    DATABASE_URL: Optional[str] = Field(None, validate_default=True)

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12

    # Email
    EMAIL_PROVIDER: str = "mock"  # mock, sendgrid
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    SENDER_EMAIL: str = "noreply@compliance-connect.local"
    SENDER_NAME: str = "Compliance Connect"
    APP_BASE_URL: str = "http://localhost:5173"

    # Company bootstrap
    BOOTSTRAP_PROPAGATION_DELAY: float = 0.0  # seconds

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    @field_validator('APP_ENV')
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Only the three known deployment environments are accepted."""
        value = (v or "").strip().lower()
        if value not in APP_ENVIRONMENTS:
            raise ValueError(
                f"APP_ENV must be one of: {', '.join(APP_ENVIRONMENTS)} (got {v!r})"
            )
        return value

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "compliance")
        password = data.get("POSTGRES_PASSWORD", "compliance")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "compliance_connect")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY outside development, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            if info.data.get("APP_ENV", "development") != "development":
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('ENABLE_MOCK_DATA')
    @classmethod
    def validate_mock_data(cls, v: bool, info) -> bool:
        """Prevent demo seeding in production."""
        if v and info.data.get("APP_ENV") == "production":
            raise ValueError(
                "ENABLE_MOCK_DATA=true is not allowed when APP_ENV=production. "
                "Demo seeding creates predictable credentials."
            )
        return v

    @field_validator('EMAIL_PROVIDER')
    @classmethod
    def validate_email_provider(cls, v: str) -> str:
        if v not in ("mock", "sendgrid"):
            raise ValueError("EMAIL_PROVIDER must be 'mock' or 'sendgrid'")
        return v


settings = Settings()


def is_development() -> bool:
    return settings.APP_ENV == "development"


def is_staging() -> bool:
    return settings.APP_ENV == "staging"


def is_production() -> bool:
    return settings.APP_ENV == "production"


def should_enable_debug_tools() -> bool:
    return settings.ENABLE_DEBUG_TOOLS and not is_production()
