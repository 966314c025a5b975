from typing import List, Union
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Application
    APP_NAME: str = "ServiceDesk Workflow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    TRANSACTION_TIMEOUT_SECONDS: float = 10.0

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Workflow behaviour
    ENFORCE_TICKET_TRANSITIONS: bool = True  # False = any known status is reachable (legacy)
    HIDE_INACCESSIBLE_ENTITIES: bool = False  # Answer 403 for missing entities to non-admins

    # Notification queue
    NOTIFICATION_ENABLED: bool = True
    NOTIFICATION_WORKERS: int = 2
    NOTIFICATION_QUEUE_MAXSIZE: int = 1000
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_SHUTDOWN_TIMEOUT_SECONDS: float = 10.0

    # Email/SMTP Settings
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""
    SMTP_FROM_NAME: str = "ServiceDesk Notifications"
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 30

    # Links in emails
    FRONTEND_BASE_URL: str = "http://localhost:3000"

    # Logging
    SLOW_REQUEST_THRESHOLD_MS: float = 1000.0
    ENABLE_STRUCTURED_LOGGING: bool = True

    # Live push
    SSE_HEARTBEAT_SECONDS: float = 30.0
    SSE_QUEUE_MAXSIZE: int = 100  # Frames buffered per connection before new ones are dropped

    @property
    def email_enabled(self) -> bool:
        """Check if email notifications are configured."""
        return bool(self.SMTP_HOST and self.SMTP_USER and self.SMTP_PASSWORD)


settings = Settings()
