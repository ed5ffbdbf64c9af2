from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./crm_intake.db"
    debug: bool = False
    log_level: str = "INFO"

    telegram_bot_token: Optional[str] = None

    attio_api_key: Optional[str] = None
    attio_base_url: str = "https://api.attio.com/v2"

    openai_api_key: Optional[str] = None
    classifier_model: str = "gpt-4o-mini"

    # Forward/instruction correlation window
    pending_instruction_ttl_ms: int = 2000
    schema_cache_ttl_seconds: int = 300

    # Hosted workflow resume
    resume_max_attempts: int = 3
    resume_backoff_ms: int = 300
    restart_settle_ms: int = 500

    # More candidates than this makes a strong textual match "ambiguous"
    ambiguity_threshold: int = 3
    assignee_page_size: int = 6

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
