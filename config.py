from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PKG_DIR = Path(__file__).resolve().parent
ENV_PATH = PKG_DIR / ".env"


class Settings(BaseSettings):
    # App
    app_env: str = "dev"
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:3001"],
        validation_alias="CORS_ORIGINS",
    )

    # Age gate
    age_threshold: int = Field(13, validation_alias="AGE_THRESHOLD")
    # ISO-2 -> minimum age without parental consent, e.g. {"KR": 14}
    country_age_thresholds: dict[str, int] = Field(
        default_factory=dict, validation_alias="COUNTRY_AGE_THRESHOLDS"
    )

    # Parental consent
    consent_policy_version: str = Field(
        "v1", min_length=1, validation_alias="CONSENT_POLICY_VERSION"
    )
    consent_validity_days: int = Field(
        365, gt=0, validation_alias="CONSENT_VALIDITY_DAYS"
    )

    # Access guard
    protected_path_prefixes: list[str] = Field(
        default_factory=lambda: ["/content", "/feed", "/settings"],
        validation_alias="PROTECTED_PATH_PREFIXES",
    )
    login_path: str = Field("/auth", validation_alias="LOGIN_PATH")
    session_cookie_name: str = Field(
        "learner_auth_session", validation_alias="SESSION_COOKIE_NAME"
    )
    session_cookie_max_age_seconds: int = 60 * 60 * 24 * 30

    # Storage
    storage_backend: str = Field("sqlite", validation_alias="STORAGE_BACKEND")
    sqlite_path: Path = Field(
        PKG_DIR / "onboarding.db", validation_alias="SQLITE_PATH"
    )
    storage_api_url: str | None = Field(
        default=None, validation_alias="STORAGE_API_URL"
    )
    storage_api_key: str | None = Field(
        default=None, validation_alias="STORAGE_API_KEY"
    )

    # HTTP client
    http_timeout_seconds: float = Field(
        8.0, validation_alias="HTTP_TIMEOUT_SECONDS"
    )
    http_max_retries: int = Field(
        4, validation_alias="HTTP_MAX_RETRIES"
    )

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


settings = Settings()
