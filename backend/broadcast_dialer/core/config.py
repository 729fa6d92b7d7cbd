from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "Voice Broadcast Dialer"
    database_url: str = Field(..., alias="DATABASE_URL")
    api_token: str = Field(..., alias="API_TOKEN")
    webhook_token: str = Field("", alias="WEBHOOK_TOKEN")
    public_base_url: str = Field("http://localhost:8000", alias="PUBLIC_BASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost",
            "http://127.0.0.1",
        ],
        alias="CORS_ORIGINS",
    )

    # telephony provider (Twilio-compatible REST API)
    telephony_api_url: str = Field("https://api.twilio.com/2010-04-01", alias="TELEPHONY_API_URL")
    telephony_account_sid: str = Field("", alias="TELEPHONY_ACCOUNT_SID")
    telephony_auth_token: str = Field("", alias="TELEPHONY_AUTH_TOKEN")
    telephony_trunk_sid: str = Field("", alias="TELEPHONY_TRUNK_SID")
    telephony_timeout_seconds: float = Field(10.0, alias="TELEPHONY_TIMEOUT_SECONDS")

    # collaborators
    speech_api_url: str = Field("", alias="SPEECH_API_URL")
    speech_api_key: str = Field("", alias="SPEECH_API_KEY")
    speech_timeout_seconds: float = Field(30.0, alias="SPEECH_TIMEOUT_SECONDS")
    default_voice_id: str = Field("default", alias="DEFAULT_VOICE_ID")
    lead_directory_url: str = Field("", alias="LEAD_DIRECTORY_URL")
    phone_directory_url: str = Field("", alias="PHONE_DIRECTORY_URL")
    calendar_api_url: str = Field("", alias="CALENDAR_API_URL")
    directory_api_key: str = Field("", alias="DIRECTORY_API_KEY")
    collaborator_timeout_seconds: float = Field(10.0, alias="COLLABORATOR_TIMEOUT_SECONDS")

    # dialer behaviour
    default_timezone: str = Field("America/New_York", alias="DEFAULT_TIMEZONE")
    max_concurrent_calls: int = Field(100, alias="MAX_CONCURRENT_CALLS")
    stuck_call_threshold_seconds: int = Field(120, alias="STUCK_CALL_THRESHOLD_SECONDS")
    stuck_answered_threshold_seconds: int = Field(900, alias="STUCK_ANSWERED_THRESHOLD_SECONDS")
    high_volume_lead_threshold: int = Field(1000, alias="HIGH_VOLUME_LEAD_THRESHOLD")
    high_volume_min_caller_ids: int = Field(5, alias="HIGH_VOLUME_MIN_CALLER_IDS")
    leads_per_caller_id: int = Field(200, alias="LEADS_PER_CALLER_ID")
    default_max_daily_calls: int = Field(100, alias="DEFAULT_MAX_DAILY_CALLS")
    error_rate_pause_threshold: float = 0.25
    error_rate_alert_threshold: float = 0.10
    error_rate_window: int = 100
    error_rate_min_samples: int = 10
    narrow_window_minutes: int = 120
    default_test_batch_size: int = 10
    max_test_batch_size: int = 50

    # workers
    pacer_tick_seconds: float = Field(1.0, alias="PACER_TICK_SECONDS")
    monitor_interval_seconds: int = Field(30, alias="MONITOR_INTERVAL_SECONDS")
    worker_max_consecutive_errors: int = 10


def get_settings() -> Settings:
    return Settings()
