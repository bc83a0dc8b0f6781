import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


class Settings(BaseModel):
    database_url: str = Field(
        default=os.getenv(
            "DATABASE_URL",
            "postgresql://postgres:root@db:5432/contracts-db",
        )
    )
    db_pool_size: int = Field(default=int(os.getenv("DB_POOL_SIZE", "10")))
    db_max_overflow: int = Field(default=int(os.getenv("DB_MAX_OVERFLOW", "20")))
    db_pool_recycle: int = Field(default=int(os.getenv("DB_POOL_RECYCLE", "1800")))

    # Auth
    secret_key: str = Field(default=os.getenv("SECRET_KEY", "change-me"))
    access_token_expire_minutes: int = Field(
        default=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
    )
    admin_email: Optional[str] = Field(default=os.getenv("ADMIN_EMAIL"))
    admin_password: Optional[str] = Field(default=os.getenv("ADMIN_PASSWORD"))

    # Signing tokens
    token_ttl_hours: int = Field(default=int(os.getenv("TOKEN_TTL_HOURS", "72")))
    token_issue_attempts: int = Field(default=int(os.getenv("TOKEN_ISSUE_ATTEMPTS", "3")))
    token_sweep_interval_minutes: int = Field(
        default=int(os.getenv("TOKEN_SWEEP_INTERVAL_MINUTES", "60"))
    )
    enable_token_sweep: bool = Field(default=_env_bool("ENABLE_TOKEN_SWEEP", "true"))
    max_signature_bytes: int = Field(
        default=int(os.getenv("MAX_SIGNATURE_BYTES", str(2 * 1024 * 1024)))
    )  # 2MB

    # Links in outgoing email
    public_base_url: str = Field(
        default=os.getenv("PUBLIC_BASE_URL", "http://localhost:3000")
    )

    # SMTP
    smtp_host: str = Field(default=os.getenv("SMTP_HOST", "localhost"))
    smtp_port: int = Field(default=int(os.getenv("SMTP_PORT", "587")))
    smtp_user: Optional[str] = Field(default=os.getenv("SMTP_USER"))
    smtp_password: Optional[str] = Field(default=os.getenv("SMTP_PASSWORD"))
    smtp_use_tls: bool = Field(default=_env_bool("SMTP_USE_TLS", "true"))
    smtp_use_ssl: bool = Field(default=_env_bool("SMTP_USE_SSL", "false"))
    smtp_timeout: int = Field(default=int(os.getenv("SMTP_TIMEOUT", "30")))
    from_email: str = Field(default=os.getenv("FROM_EMAIL", "noreply@example.com"))
    company_name: str = Field(default=os.getenv("COMPANY_NAME", "Contract Management"))

    cors_origins: str = Field(
        default=os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    )
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
