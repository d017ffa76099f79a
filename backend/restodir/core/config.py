"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_city_bounds() -> dict[str, list[float]]:
    # lat_min, lat_max, lon_min, lon_max; expanded ~15-20 km around the centre for suburbs
    return {
        "Минск": [53.75, 54.10, 27.30, 27.85],
        "Гродно": [53.55, 53.78, 23.70, 24.00],
        "Брест": [51.98, 52.20, 23.55, 23.85],
        "Гомель": [52.32, 52.52, 30.85, 31.15],
        "Витебск": [55.10, 55.28, 30.05, 30.35],
        "Могилев": [53.82, 54.00, 30.20, 30.50],
        "Бобруйск": [53.08, 53.22, 29.10, 29.40],
    }


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "Restaurant Directory API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True  # one JSON object per line on stdout

    # JWT verification only; tokens are issued by the auth service
    SECRET_KEY: str  # set via env/.env
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "restodir-auth"
    JWT_AUDIENCE: str = "restodir-clients"

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "restodir"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "restodir"
    DB_URL: str | None = None  # full SQLAlchemy URL, overrides the DB_* parts
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ISOLATION_LEVEL: str = "READ COMMITTED"
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025

    # Served region; coordinates outside are rejected, never clamped
    REGION_LAT_MIN: float = 51.0
    REGION_LAT_MAX: float = 56.0
    REGION_LON_MIN: float = 23.0
    REGION_LON_MAX: float = 33.0
    CITY_BOUNDS: dict[str, list[float]] = Field(default_factory=_default_city_bounds)

    # Allow-lists narrowing the closed enums; empty means every enum value is allowed
    ALLOWED_CITIES: list[str] = Field(default_factory=list)
    ALLOWED_CATEGORIES: list[str] = Field(default_factory=list)
    ALLOWED_CUISINES: list[str] = Field(default_factory=list)

    # Discovery
    DISCOVERY_TIMEZONE: str = "Europe/Minsk"
    SEARCH_MAX_RADIUS_KM: float = 1000.0
    SEARCH_DEFAULT_LIMIT: int = 20
    SEARCH_MAX_LIMIT: int = 100
    BOUNDS_DEFAULT_LIMIT: int = 100
    BOUNDS_MAX_LIMIT: int = 500
    LISTING_DEFAULT_LIMIT: int = 20
    LISTING_MAX_LIMIT: int = 50

    # Audit emission is fire-and-forget, bounded by this timeout
    AUDIT_TIMEOUT_SEC: float = 5.0

    # Rate limits, see restodir.core.rate_limit.limiter for syntax
    RATE_LIMIT_ENABLED: bool = True
    SEARCH_RATE: str = "120/minute"

    MAX_BODY_BYTES: int = 256 * 1024

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )


settings = Settings()
