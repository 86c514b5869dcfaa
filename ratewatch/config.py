from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True)
    rate_source_url: str = Field(default="https://www.mortgagenewsdaily.com/mortgage-rates/mnd", alias="RATE_SOURCE_URL")
    rate_source_name: str = Field(default="mortgage_news_daily", alias="RATE_SOURCE_NAME")
    local_tz: str = Field(default="America/New_York", alias="LOCAL_TZ")
    daily_cutover: str = Field(default="00:00", alias="DAILY_CUTOVER")
    http_timeout_seconds: float = Field(default=20.0, alias="HTTP_TIMEOUT_SECONDS")
    http_retry_attempts: int = Field(default=3, alias="HTTP_RETRY_ATTEMPTS")
    http_retry_backoff_seconds: float = Field(default=2.0, alias="HTTP_RETRY_BACKOFF_SECONDS")
    http_user_agent: str = Field(
        default="Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36",
        alias="HTTP_USER_AGENT",
    )
    db_path: str = Field(default="./data/ratewatch.db", alias="DB_PATH")
    current_scan_limit: int = Field(default=50, alias="CURRENT_SCAN_LIMIT")
    pipeline_time_budget_seconds: int = Field(default=900, alias="PIPELINE_TIME_BUDGET_SECONDS")
    pipeline_lock_ttl_seconds: int = Field(default=1800, alias="PIPELINE_LOCK_TTL_SECONDS")
    alert_cooldown_hours: int = Field(default=24, alias="ALERT_COOLDOWN_HOURS")
    notify_min_interval_seconds: float = Field(default=0.6, alias="NOTIFY_MIN_INTERVAL_SECONDS")
    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY")
    resend_base_url: str = Field(default="https://api.resend.com", alias="RESEND_BASE_URL")
    notify_from: str = Field(default="Rate Alerts <alerts@ratemonitorpro.com>", alias="NOTIFY_FROM")
    app_base_url: str = Field(default="https://ratemonitorpro.com", alias="APP_BASE_URL")
    default_loan_amount: float = Field(default=300000.0, alias="DEFAULT_LOAN_AMOUNT")
    scheduler_enabled: int = Field(default=1, alias="SCHEDULER_ENABLED")
    pipeline_cron: str = Field(default="20 8-18 * * mon-fri", alias="PIPELINE_CRON")
    weekly_summary_enabled: int = Field(default=1, alias="WEEKLY_SUMMARY_ENABLED")
    weekly_summary_cron: str = Field(default="0 8 * * mon", alias="WEEKLY_SUMMARY_CRON")

settings = Settings()
