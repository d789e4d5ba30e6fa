"""
Configuration Management Module
Settings for the authentication and session service
"""
import warnings
from datetime import timedelta
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import secrets
from urllib.parse import quote_plus


class AuthConfig(BaseModel):
    """Immutable auth configuration injected into the token and session components"""

    model_config = ConfigDict(frozen=True)

    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    refresh_threshold_seconds: int = 60
    rotate_window_seconds: int = 86400

    max_login_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=15)
    max_active_sessions: int = 10
    store_timeout_seconds: float = 2.0

    refresh_cookie_name: str = "refresh_token"
    cookie_path: str = "/api/v1"
    cookie_domain: Optional[str] = None
    cookie_secure: bool = False
    cookie_samesite: str = "lax"
    access_token_header: str = "X-Access-Token"

    @model_validator(mode="after")
    def check_distinct_secrets(self) -> "AuthConfig":
        if self.access_secret == self.refresh_secret:
            raise ValueError("Access and refresh tokens must use different secrets")
        return self


class Settings(BaseSettings):
    """Application settings with security configurations"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "Trip Planner Auth API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development", pattern="^(development|testing|staging|production)$")
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    API_V1_PREFIX: str = "/api/v1"
    FRONTEND_URL: str = "http://localhost:3000"

    PASSWORD_MIN_LENGTH: int = Field(
        default=8,
        description="Minimum password length for user accounts"
    )
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_DIGIT: bool = True
    PASSWORD_REQUIRE_SPECIAL: bool = True
    PASSWORD_MIN_SCORE: int = Field(
        default=0,
        ge=0,
        le=4,
        description="Minimum zxcvbn score (0-4) on top of the character class rules"
    )
    MAX_ACTIVE_SESSIONS: int = Field(
        default=10,
        description="Maximum concurrent refresh sessions per user"
    )

    # Password hashing cost
    ARGON2_TIME_COST: int = 2
    ARGON2_MEMORY_COST: int = 65536  # 64 MB
    ARGON2_PARALLELISM: int = 4
    ARGON2_HASH_LENGTH: int = 32
    ARGON2_SALT_LENGTH: int = 16

    # ========================================================================
    # REDIS / CELERY CONFIGURATION
    # ========================================================================
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "trip_auth"
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    SESSION_CLEANUP_INTERVAL_MINUTES: int = 60
    REDIS_MAX_CONNECTIONS: int = 10

    # Throttling of credential endpoints, per client ip and endpoint
    RATE_LIMIT_ENABLED: bool = True
    AUTH_RATE_LIMIT_PER_MINUTE: int = 10
    RATE_LIMIT_BACKOFF_BASE: float = 2.0  # Exponential backoff base
    RATE_LIMIT_MAX_VIOLATIONS: int = 5  # Max violations before extended ban
    RATE_LIMIT_BAN_DURATION_MINUTES: int = 60  # Ban duration after max violations

    # ========================================================================
    # SECURITY CONFIGURATION
    # ========================================================================
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_SECRET: str = Field(
        default="",
        description="Secret used to sign access tokens (min 32 chars)"
    )
    JWT_REFRESH_SECRET: str = Field(
        default="",
        description="Secret used to sign refresh tokens (min 32 chars, distinct from access secret)"
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    ACCESS_REFRESH_THRESHOLD_SECONDS: int = Field(
        default=60,
        description="Seconds before access token expiry that trigger a rolling refresh"
    )
    REFRESH_ROTATE_WINDOW_SECONDS: int = Field(
        default=86400,
        description="Refresh sessions with less lifetime left than this are rotated"
    )
    SESSION_STORE_TIMEOUT_SECONDS: float = 2.0

    # Account lockout
    MAX_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCKOUT_DURATION_MINUTES: int = 15

    # Email verification
    EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS: int = 24

    # Cookie settings
    REFRESH_COOKIE_NAME: str = "refresh_token"
    REFRESH_COOKIE_PATH: Optional[str] = None
    COOKIE_DOMAIN: Optional[str] = None
    COOKIE_SECURE: Optional[bool] = None
    COOKIE_SAMESITE: str = Field(default="lax", pattern="^(lax|strict|none)$")
    ACCESS_TOKEN_RESPONSE_HEADER: str = "X-Access-Token"

    @field_validator("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        """Ensure signing secrets are strong enough"""
        if not v:
            generated_key = secrets.token_urlsafe(32)
            warnings.warn(
                "JWT secret not set in .env - using generated key. "
                "This should be set permanently in production!",
                UserWarning
            )
            return generated_key
        if len(v) < 32:
            raise ValueError("JWT secrets must be at least 32 characters long")
        return v

    # CORS Settings
    CORS_ORIGINS: List[str] = Field(default=["http://localhost:3000"])

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ========================================================================
    # LOGGING CONFIGURATION
    # ========================================================================
    LOG_LEVEL: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid"""
        return v.upper() if isinstance(v, str) else v

    # ========================================================================
    # EMAIL CONFIGURATION
    # ========================================================================
    EMAIL_ENABLED: bool = False
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = Field(
        default=None,
        description="SMTP username for sending emails"
    )
    SMTP_PASSWORD: Optional[str] = Field(
        default=None,
        description="SMTP password for sending emails"
    )
    SMTP_FROM_EMAIL: str = "noreply@tripplanner.app"
    SMTP_FROM_NAME: str = "Trip Planner"

    # ========================================================================
    # COMPUTED PROPERTIES
    # ========================================================================
    @property
    def cookie_secure(self) -> bool:
        """Secure cookies in production unless explicitly overridden"""
        if self.COOKIE_SECURE is not None:
            return self.COOKIE_SECURE
        return self.ENVIRONMENT == "production"

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENVIRONMENT == "production"

    # ========================================================================
    # DATABASE CONFIGURATION
    # ========================================================================

    DB_USER: str = Field(
        default="postgres",
        description="Database username"
    )
    DB_PASSWORD: str = Field(
        default="",
        description="Database password"
    )
    DB_HOST: str = Field(
        default="localhost",
        description="Database host"
    )
    DB_PORT: int = Field(
        default=5432,
        description="Database port"
    )
    DB_NAME: str = Field(
        default="trip_planner",
        description="Database name"
    )
    DATABASE_URL_OVERRIDE: Optional[str] = Field(
        default=None,
        description="Full async SQLAlchemy URL, bypasses the DB_* parts (e.g. sqlite+aiosqlite)"
    )

    @property
    def DATABASE_URL(self) -> str:
        """Construct async database URL with encoded password"""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        encoded_password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{encoded_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def database_url_sync(self) -> str:
        """Get synchronous database URL for Alembic"""
        encoded_password = quote_plus(self.DB_PASSWORD)
        # Double %% ONLY for Alembic's INI file parsing
        encoded_password = encoded_password.replace('%', '%%')
        return f"postgresql://{self.DB_USER}:{encoded_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    def auth_config(self) -> AuthConfig:
        """Build the immutable auth configuration from the environment settings"""
        return AuthConfig(
            access_secret=self.JWT_ACCESS_SECRET,
            refresh_secret=self.JWT_REFRESH_SECRET,
            algorithm=self.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=self.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=self.REFRESH_TOKEN_EXPIRE_DAYS),
            refresh_threshold_seconds=self.ACCESS_REFRESH_THRESHOLD_SECONDS,
            rotate_window_seconds=self.REFRESH_ROTATE_WINDOW_SECONDS,
            max_login_attempts=self.MAX_LOGIN_ATTEMPTS,
            lockout_duration=timedelta(minutes=self.ACCOUNT_LOCKOUT_DURATION_MINUTES),
            max_active_sessions=self.MAX_ACTIVE_SESSIONS,
            store_timeout_seconds=self.SESSION_STORE_TIMEOUT_SECONDS,
            refresh_cookie_name=self.REFRESH_COOKIE_NAME,
            cookie_path=self.REFRESH_COOKIE_PATH or self.API_V1_PREFIX or "/",
            cookie_domain=self.COOKIE_DOMAIN,
            cookie_secure=self.cookie_secure,
            cookie_samesite=self.COOKIE_SAMESITE,
            access_token_header=self.ACCESS_TOKEN_RESPONSE_HEADER,
        )

    def validate_configuration(self) -> List[str]:
        """
        Validate configuration and return list of warnings/issues
        Useful for startup checks
        """
        issues = []

        if self.ENVIRONMENT == "production":
            if self.JWT_ACCESS_SECRET == self.JWT_REFRESH_SECRET:
                issues.append("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
            if not self.cookie_secure:
                issues.append("COOKIE_SECURE disabled in production")
            if self.EMAIL_ENABLED and not self.SMTP_USER:
                issues.append("SMTP_USER not set - verification emails will fail")

        return issues


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance
    Using lru_cache ensures we only load settings once
    """
    settings = Settings()
    issues = settings.validate_configuration()
    if issues:
        warnings.warn(
            "Configuration issues found: " + "; ".join(issues),
            UserWarning
        )
    return settings


# Export settings instance
settings = get_settings()
