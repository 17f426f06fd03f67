# ========================================
# config.py - Pipeline configuration
# ========================================

import os
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---------- LLM Configuration (Gemini) ----------------------------- #
    llm_api_key: str = ""
    llm_model: str = "gemini-1.5-flash"
    llm_temperature: float = 0.4
    llm_max_tokens: int = 6000
    llm_timeout_seconds: float = 60.0

    # ---------- LiveKit (Live Demo Broadcast) -------------------------- #
    livekit_url: str = ""
    livekit_api_key: str = ""
    livekit_api_secret: str = ""
    livekit_token_ttl_minutes: int = 60

    # ---------- ElevenLabs (Voice Agent) ------------------------------- #
    elevenlabs_api_key: str = ""
    elevenlabs_agent_id: str = ""
    elevenlabs_api_base: str = "https://api.elevenlabs.io"

    # ---------- Database ----------------------------------------------- #
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""

    # ---------- Firebase (Recording Storage) --------------------------- #
    firebase_project_id: str = ""
    firebase_credentials_path: str = "serviceAccount.json"
    firebase_storage_bucket: str = ""
    recording_url_ttl_minutes: int = 60

    # ---------- Email -------------------------------------------------- #
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "interviews@example.com"
    management_email: str = ""
    app_url: str = "http://localhost:5173"

    # ---------- Security ----------------------------------------------- #
    api_token: str = os.getenv("API_TOKEN", "")

    # ---------- CORS --------------------------------------------------- #
    allowed_origins: str = "http://localhost:3000,http://localhost:5173,http://localhost:5174"

    # ---------- Pipeline Settings -------------------------------------- #
    demo_min_duration_seconds: int = 30
    demo_closing_delay_seconds: float = 5.0
    tick_interval_seconds: float = 1.0
    max_recording_bytes: int = 500 * 1024 * 1024
    upload_retries: int = 2
    upload_retry_backoff_seconds: float = 1.0

    # ---------- Logging ------------------------------------------------ #
    log_level: str = "INFO"
    log_format: str = "console"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
