"""
Configuration management with environment variable validation.
Loads and validates all configuration from environment variables.
"""
import json
from typing import Annotated, List

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="countries-api")
    app_version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000)
    reload: bool = Field(default=False)

    # Security
    jwt_secret: str = Field(...)  # Required
    jwt_algorithm: str = Field(default="HS256")
    jwt_expire_minutes: int = Field(default=1440, ge=1)  # 1 day

    # Database
    database_url: str = Field(default="sqlite:///./countries_api.db")
    database_pool_size: int = Field(default=5)
    database_max_overflow: int = Field(default=10)
    database_echo: bool = Field(default=False)

    # API keys
    api_key_header: str = Field(default="X-API-Key")
    uniform_auth_errors: bool = Field(default=False)

    # REST Countries upstream
    rest_countries_url: str = Field(default="https://restcountries.com/v3.1")
    rest_countries_timeout: float = Field(default=10.0, gt=0)

    # Logging
    log_format: str = Field(default="json")
    log_file_enabled: bool = Field(default=False)
    log_file_path: str = Field(default="./logs/countries_api.log")
    log_file_max_size: int = Field(default=10485760)  # 10MB
    log_file_backup_count: int = Field(default=5)

    # CORS
    cors_enabled: bool = Field(default=True)
    # NoDecode: the raw env string reaches parse_cors_origins (JSON list or comma list)
    cors_origins: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://localhost:5173"]
    )
    cors_allow_credentials: bool = Field(default=True)

    @field_validator("jwt_secret")
    @classmethod
    def validate_secrets(cls, v: str, info: ValidationInfo) -> str:
        """Ensure security-critical values are not defaults."""
        if not v or v in ["CHANGE_ME", "changeme", "password", "secret"]:
            raise ValueError(
                f"{info.field_name} must be set to a secure value. "
                f"Generate with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        if len(v) < 32:
            raise ValueError(f"{info.field_name} must be at least 32 characters long")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production", "test"]
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        allowed = ["json", "console"]
        if v not in allowed:
            raise ValueError(f"log_format must be one of: {allowed}")
        return v

    @field_validator("rest_countries_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from JSON string if needed."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def validate_environment() -> Settings:
    """
    Validate environment configuration on startup.
    Raises ValueError if required variables are missing or invalid.
    """
    try:
        settings = Settings()

        if settings.environment == "production":
            if settings.debug:
                raise ValueError("DEBUG must be False in production")
            if settings.reload:
                raise ValueError("RELOAD must be False in production")
            if settings.database_echo:
                raise ValueError("DATABASE_ECHO must be False in production")

        if not settings.database_url.startswith(("sqlite://", "postgresql://", "postgresql+psycopg2://")):
            raise ValueError("DATABASE_URL must be a SQLite or PostgreSQL connection string")

        return settings

    except Exception as e:
        print(f"\nEnvironment Configuration Error:")
        print(f"   {str(e)}\n")
        print("Tip: Copy .env.example to .env and fill in your values")
        print("   Generate secrets with: python -c \"import secrets; print(secrets.token_hex(32))\"")
        raise


# Global settings instance
settings = validate_environment()
