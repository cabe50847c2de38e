"""Process-wide configuration.

Settings are read once at startup by :func:`load_settings` and handed to
``create_app``.  The resulting :class:`Settings` object is frozen; the
token-signing secret in particular is never re-read or mutated after the
application has been built.

Configuration via environment variables (a ``.env`` file is honoured):

- JWT_SECRET / JWT_ALGORITHM: token signing key and algorithm
- ACCESS_TOKEN_HOURS / REFRESH_TOKEN_DAYS: token lifetimes
- DATABASE_URL: SQLAlchemy async URL (postgresql+asyncpg://...)
- SQLALCHEMY_ECHO, CREATE_SCHEMA: engine echo and create-tables-on-startup
- ENVIRONMENT: 'production' or 'development'
- ALLOWED_ORIGINS: comma-separated CORS origins
- RATE_LIMIT_ENABLED / RATE_LIMIT_PER_MINUTE: slowapi limits
- MAX_REQUEST_SIZE_MB: request body limit
- TRUSTED_PROXY_COUNT: proxies in front of the app (client IP extraction)
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "proposal-review-dev-secret-change-in-production"
MIN_PRODUCTION_SECRET_LENGTH = 32

_DEFAULT_DEV_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:8080"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_hours: int = 24
    refresh_token_days: int = 7

    database_url: str = "sqlite+aiosqlite:///./proposal_review.db"
    sqlalchemy_echo: bool = False
    create_schema: bool = False

    environment: str = "development"
    allowed_origins: tuple[str, ...] = field(
        default_factory=lambda: tuple(_DEFAULT_DEV_ORIGINS.split(","))
    )

    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 100
    max_request_size_mb: int = 10
    trusted_proxy_count: int = 1

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def validate(self) -> None:
        """Refuse unsafe signing configuration in production."""
        if not self.is_production:
            if self.jwt_secret == DEV_JWT_SECRET:
                logger.warning(
                    "Using the built-in development JWT secret. "
                    "Set JWT_SECRET before deploying."
                )
            return
        if self.jwt_secret == DEV_JWT_SECRET:
            raise ValueError("JWT_SECRET must be set in production")
        if len(self.jwt_secret) < MIN_PRODUCTION_SECRET_LENGTH:
            raise ValueError(
                f"JWT_SECRET must be at least {MIN_PRODUCTION_SECRET_LENGTH} characters"
            )
        for origin in self.allowed_origins:
            if not origin.startswith("https://"):
                raise ValueError(f"Non-HTTPS origin not allowed in production: {origin}")


def load_settings() -> Settings:
    """Build :class:`Settings` from the environment (and ``.env``)."""
    load_dotenv()

    environment = os.getenv("ENVIRONMENT", "development").lower()
    origins_raw = os.getenv("ALLOWED_ORIGINS", _DEFAULT_DEV_ORIGINS)
    origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())

    settings = Settings(
        jwt_secret=os.getenv("JWT_SECRET", DEV_JWT_SECRET),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_hours=int(os.getenv("ACCESS_TOKEN_HOURS", "24")),
        refresh_token_days=int(os.getenv("REFRESH_TOKEN_DAYS", "7")),
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        sqlalchemy_echo=_env_bool("SQLALCHEMY_ECHO", False),
        create_schema=_env_bool("CREATE_SCHEMA", False),
        environment=environment,
        allowed_origins=origins,
        rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
        rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "100")),
        max_request_size_mb=int(os.getenv("MAX_REQUEST_SIZE_MB", "10")),
        trusted_proxy_count=int(os.getenv("TRUSTED_PROXY_COUNT", "1")),
    )
    settings.validate()
    return settings
