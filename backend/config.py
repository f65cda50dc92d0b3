from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    narrative_model: str = "gemini-2.5-flash"

    # Outbound narrative call: per-attempt timeout, then bounded retry with backoff
    llm_timeout_seconds: float = 15.0
    llm_max_retries: int = 2
    llm_retry_delay_seconds: float = 1.0

    # Gameplay tuning
    quorum_fraction: float = 0.75
    min_players_to_start: int = 2
    nudge_cooldown_seconds: float = 10.0
    chat_window_seconds: float = 10.0
    chat_max_messages: int = 10
    max_chat_length: int = 500

    # CORS origins: set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin; appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    @property
    def cors_origins(self) -> List[str]:
        if self.extra_origin:
            return [*self.allowed_origins, self.extra_origin]
        return list(self.allowed_origins)


settings = Settings()
