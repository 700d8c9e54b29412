"""
config.py

Centralized configuration management using pydantic-settings.
All modules must import settings from this file.
Direct os.getenv() calls are prohibited elsewhere.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from .env file."""

    # Database
    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "vigia"
    mysql_password: str = ""
    mysql_db: str = "vigia_alerts"

    # Redis (Celery broker and result backend)
    redis_url: str = "redis://127.0.0.1:6379/0"

    # FCM: HTTP v1 send API + Instance ID topic management
    fcm_project_id: str = ""
    fcm_access_token: str = ""
    fcm_server_key: str = ""
    fcm_send_url: str = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
    fcm_iid_url: str = "https://iid.googleapis.com/iid/v1"

    # Expo push service
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: str = ""

    # Transport timeouts (seconds)
    push_timeout_seconds: float = 10.0

    # Fan-out behavior
    fanout_dedup_enabled: bool = True
    fanout_claim_ttl_seconds: int = 3600
    tile_fanout_mode: str = "tokens"  # "tokens" | "topics"

    # Device hygiene
    stale_device_days: int = 30

    # Receipt acknowledgements
    ack_throttle_seconds: float = 5.0

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
