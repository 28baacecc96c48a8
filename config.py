"""
Runtime settings for the checklist service.

Values come from the environment (prefix CHECKLIST_) or a local .env file.
"""

from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="CHECKLIST_", extra="ignore")

    # ---- Storage ----
    data_dir: str = "./data"
    upload_dir: str = "./public/uploads/checklist-photos"
    max_upload_bytes: int = 10 * 1024 * 1024

    # ---- Auth ----
    jwt_secret: str = "checklist-system-secret-key"
    jwt_algo: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Seeded into an empty users collection on startup
    default_admin_username: str = "admin"
    default_admin_password: str = "admin123"
    default_admin_name: str = "Administrador"

    # ---- Scheduling ----
    timezone: str = "UTC"  # technicians' local calendar

    # ---- HTTP ----
    cors_allow_origins: str = "*"  # comma-separated
    log_level: str = "INFO"

    def tzinfo(self) -> Optional[ZoneInfo]:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return None

    def cors_origins(self) -> List[str]:
        v = (self.cors_allow_origins or "").strip()
        if not v or v == "*":
            return ["*"]
        return [x.strip() for x in v.split(",") if x.strip()]
