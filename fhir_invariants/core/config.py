"""Engine configuration loaded from the environment."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment."""

    log_level: str = "INFO"

    # Constraint sources
    extra_rules_file: str | None = None
    eager_compile: bool = True

    # Extra %constants available to expressions, on top of the well-known ones
    constants: dict[str, str] = {}

    # Evaluation
    deadline_seconds: float | None = None

    # Batch runs
    max_workers: int = 4
    skip_instance_patterns: list[str] = ["v2-tables"]
    expected_diagnostics: list[str] = []

    model_config = SettingsConfigDict(
        env_prefix="FHIR_INVARIANTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
