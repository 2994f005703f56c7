from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "Logistica Field Sync"
    DEBUG: bool = False

    # Remote logistics API
    API_BASE_URL: str = "http://localhost:3001"
    API_TOKEN: str | None = Field(default=None)
    API_TIMEOUT_SECONDS: float = 30.0
    HTTP_RETRY_ATTEMPTS: int = 2

    # Local device storage
    LOCAL_DB_URL: str = "sqlite:///./fieldsync.db"

    # Employee bound to this device, enables the notification poll
    EMPLOYEE_ID: str | None = Field(default=None)

    # Outbox
    OUTBOX_SENDING_STALE_SECONDS: int = 5 * 60
    OUTBOX_FLUSH_INTERVAL_SECONDS: int = 60

    # Connectivity and notifications
    CONNECTIVITY_INTERVAL_SECONDS: int = 30
    NOTIFICATIONS_POLL_INTERVAL_SECONDS: int = 30
    NOTIFICATION_TOAST_SECONDS: float = 3.5

    SCHEDULER_TIMEZONE: str = "America/Sao_Paulo"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


settings = Settings()
