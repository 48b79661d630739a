from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    app_env: str = Field(default="development", env="APP_ENV")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./medbill.db",
        env="DATABASE_URL",
    )
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")

    # JWT
    jwt_secret_key: str = Field(
        default="dev-only-secret-change-me-before-deploying-0000",
        env="JWT_SECRET_KEY",
    )
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    jwt_expire_minutes: int = Field(default=8 * 60, env="JWT_EXPIRE_MINUTES")

    # Login lockout
    lockout_threshold: int = Field(default=5, env="LOCKOUT_THRESHOLD")
    lockout_minutes: int = Field(default=15, env="LOCKOUT_MINUTES")
    password_reset_minutes: int = Field(default=10, env="PASSWORD_RESET_MINUTES")

    # First superadmin, created on startup when both are set
    bootstrap_admin_username: str = Field(default="", env="BOOTSTRAP_ADMIN_USERNAME")
    bootstrap_admin_email: str = Field(default="", env="BOOTSTRAP_ADMIN_EMAIL")
    bootstrap_admin_password: str = Field(default="", env="BOOTSTRAP_ADMIN_PASSWORD")

    # CORS
    cors_origins: str = Field(default="*", env="CORS_ORIGINS")

    # Bulk import
    max_upload_bytes: int = Field(default=5 * 1024 * 1024, env="MAX_UPLOAD_BYTES")

    # SMTP (password reset mail)
    smtp_host: str = Field(default="smtp.gmail.com", env="SMTP_HOST")
    smtp_port: int = Field(default=587, env="SMTP_PORT")
    smtp_username: str = Field(default="", env="SMTP_USERNAME")
    smtp_password: str = Field(default="", env="SMTP_PASSWORD")
    frontend_url: str = Field(default="http://localhost:3000", env="FRONTEND_URL")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_json: bool = Field(default=True, env="LOG_JSON")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
