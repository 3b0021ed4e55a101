"""Mobile OTP Auth — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./otp_auth.db"
    challenge_backend: str = "memory"  # "memory" or "sql"

    # ── OTP policy ────────────────────────────────────────
    otp_length: int = 6
    otp_ttl_seconds: int = 300
    otp_max_attempts: int = 3
    otp_storage_secret: str = ""

    # ── Rate limiting ─────────────────────────────────────
    resend_cooldown_seconds: int = 30
    issue_window_seconds: int = 3600
    issue_limit_per_phone: int = 5
    issue_limit_per_origin: int = 20
    verify_window_seconds: int = 3600
    verify_limit_per_phone: int = 0  # 0 = attempt budget only
    trusted_proxy_count: int = 0  # X-Forwarded-For hops added by our own proxies

    # ── Phone numbers ─────────────────────────────────────
    default_country_code: str = "91"
    mobile_leading_digits: str = "6789"

    # ── SMS delivery ──────────────────────────────────────
    sms_provider: str = "log"  # "log" or "twilio"
    sms_template: str = (
        "Your {app_name} verification code is: {code}. "
        "This code will expire in {minutes} minutes."
    )
    delivery_timeout_seconds: float = 10.0
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"

    # ── App ───────────────────────────────────────────────
    app_name: str = "Mobile OTP Auth"
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
