# File: app/core/config.py

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """
    CivicPulse runtime configuration, read from the environment or a local .env.

    DATABASE_URL is the only mandatory value (postgresql://... in production,
    sqlite:// under test).

    Sweeps: ENABLE_SCHEDULER, ESCALATION_INTERVAL_MINUTES, AUTO_PROMOTION_INTERVAL_MINUTES,
    DIGEST_INTERVAL_MINUTES (0 turns the weekly commissioner digest off),
    NOTIFICATION_TIMEOUT_SECONDS.

    Escalation contacts: EXEC_ENG_* for tier 2, COMMISSIONER_* for tier 3. A tier 3
    text message is only sent when COMMISSIONER_PHONE is set.

    Transports are optional; anything left unset makes that channel log instead of send.
    Mail goes out over SMTP_* or, with EMAIL_PROVIDER=resend, through RESEND_API_KEY.
    EMAIL_REDIRECT_TO reroutes every mail while EMAIL_DOMAIN_VERIFIED is false.
    Text messages use TWILIO_*, web push uses VAPID_*.
    """
    database_url: str = Field(..., alias="DATABASE_URL")
    backend_cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        alias="BACKEND_CORS_ORIGINS",
    )
    frontend_base_url: str = Field(default="", alias="FRONTEND_BASE_URL")
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")

    # background sweeps
    enable_scheduler: bool = Field(default=True, alias="ENABLE_SCHEDULER")
    escalation_interval_minutes: int = Field(default=15, alias="ESCALATION_INTERVAL_MINUTES")
    auto_promotion_interval_minutes: int = Field(default=30, alias="AUTO_PROMOTION_INTERVAL_MINUTES")
    digest_interval_minutes: int = Field(default=7 * 24 * 60, alias="DIGEST_INTERVAL_MINUTES")
    notification_timeout_seconds: float = Field(default=20.0, alias="NOTIFICATION_TIMEOUT_SECONDS")

    # escalation recipients
    exec_eng_name: str = Field(default="Executive Engineer", alias="EXEC_ENG_NAME")
    exec_eng_email: str = Field(default="exec.engineer@mcd.gov.in", alias="EXEC_ENG_EMAIL")
    exec_eng_phone: str = Field(default="+91-98100-00001", alias="EXEC_ENG_PHONE")
    commissioner_name: str = Field(default="Commissioner", alias="COMMISSIONER_NAME")
    commissioner_email: str = Field(default="commissioner@mcd.gov.in", alias="COMMISSIONER_EMAIL")
    commissioner_phone: Optional[str] = Field(default=None, alias="COMMISSIONER_PHONE")

    email_provider: str = Field(default="smtp", alias="EMAIL_PROVIDER")
    smtp_host: Optional[str] = Field(default=None, alias="SMTP_HOST")
    smtp_port: Optional[int] = Field(default=587, alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_ssl: bool = Field(default=True, alias="SMTP_USE_SSL")
    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    email_from_name: Optional[str] = Field(default=None, alias="EMAIL_FROM_NAME")
    email_from_address: Optional[str] = Field(default=None, alias="EMAIL_FROM_ADDRESS")
    email_redirect_to: Optional[str] = Field(default=None, alias="EMAIL_REDIRECT_TO")
    email_domain_verified: bool = Field(default=False, alias="EMAIL_DOMAIN_VERIFIED")

    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_from: Optional[str] = Field(default=None, alias="TWILIO_FROM")

    vapid_private_key: Optional[str] = Field(default=None, alias="VAPID_PRIVATE_KEY")
    vapid_public_key: Optional[str] = Field(default=None, alias="VAPID_PUBLIC_KEY")
    vapid_sub: str = Field(default="mailto:noreply@example.com", alias="VAPID_SUB")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

def cors_origins_list() -> List[str]:
    raw = settings.backend_cors_origins or ""
    return [x.strip().rstrip("/") for x in raw.split(",") if x.strip()]

settings = Settings()
