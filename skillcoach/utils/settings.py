from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(default="dev", validation_alias="APP_ENV")

    # SkillCoach agent (external AI tutor). Practice endpoint is required for AI sourcing;
    # explanation endpoint defaults to the practice URL with the route swapped.
    skillcoach_practice_url: str | None = Field(default=None, validation_alias="SMYTHOS_SKILLCOACH_URL")
    skillcoach_explanation_url: str | None = Field(default=None, validation_alias="SMYTHOS_EXPLANATION_URL")
    skillcoach_api_key: str | None = Field(default=None, validation_alias="SMYTHOS_API_KEY")
    skillcoach_timeout_seconds: float = Field(default=10.0, validation_alias="SKILLCOACH_TIMEOUT_SECONDS")
    skillcoach_explanation_timeout_seconds: float = Field(
        default=15.0, validation_alias="SKILLCOACH_EXPLANATION_TIMEOUT_SECONDS"
    )
    skillcoach_max_attempts: int = Field(default=2, validation_alias="SKILLCOACH_MAX_ATTEMPTS")

    # Practice / ingestion
    practice_default_count: int = Field(default=5, validation_alias="PRACTICE_DEFAULT_COUNT")
    # auto | legacy | braced
    qbank_parser_dialect: str = Field(default="auto", validation_alias="QBANK_PARSER_DIALECT")
    max_upload_bytes: int = Field(default=20 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")

    # Scored assessments (GET /api/test)
    assessment_default_size: int = Field(default=5, validation_alias="ASSESSMENT_SIZE")
    assessment_default_type: int | None = Field(default=1, validation_alias="ASSESSMENT_TOPIC_TYPE")

    # Persistence backends
    # memory | supabase
    qbank_backend: str = Field(default="memory", validation_alias="QBANK_BACKEND")
    # memory | redis | supabase
    performance_backend: str = Field(default="memory", validation_alias="PERFORMANCE_BACKEND")
    supabase_url: str | None = Field(default=None, validation_alias="SUPABASE_URL")
    supabase_key: str | None = Field(default=None, validation_alias="SUPABASE_KEY")
    redis_url: str | None = Field(default=None, validation_alias="REDIS_URL")
    performance_redis_prefix: str = Field(default="perf:", validation_alias="PERFORMANCE_REDIS_PREFIX")
    performance_write_attempts: int = Field(default=3, validation_alias="PERFORMANCE_WRITE_ATTEMPTS")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    allow_origins: list[str] = Field(default=["*"], validation_alias="ALLOW_ORIGINS")
    log_to_file: bool = Field(default=True, validation_alias="LOG_TO_FILE")
    log_file_path: str = Field(
        default=os.path.join("logs", "backend.log"),
        validation_alias="LOG_FILE_PATH",
    )
    log_max_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=5, validation_alias="LOG_BACKUP_COUNT")
    metrics_token: str | None = Field(default=None, validation_alias="METRICS_TOKEN")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
