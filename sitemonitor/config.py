from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Backend platform (functions + filtered-read REST interface)
    supabase_url: str = "http://127.0.0.1:54321"
    supabase_service_key: str = ""

    # Primary site; page paths in the targets file are resolved against it
    site_url: str = "https://www.example.com"
    expected_origin: str = "https://www.example.com"  # origin functions must echo back

    # Targets + remediation policy
    targets_file: str = "monitor.yaml"

    # Probes
    probe_timeout_seconds: float = 10.0

    # Remediation
    redeploy_hook_url: str = ""  # empty = page-failure redeploys are skipped
    self_healing_default: bool = True

    # Audit log: "sqlite" | "rest" | "none"
    audit_backend: str = "sqlite"
    audit_db_path: str = "data/site_health.db"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    allowed_origins: list[str] = [
        "https://www.example.com",
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Logging
    log_level: str = "INFO"

    # Notifications (optional: Slack, Telegram)
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""


settings = Settings()
