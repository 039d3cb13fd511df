import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Persistence (primary store; the secondary store is always in-memory)
    DATABASE_URL: Optional[str] = "sqlite:///./coursegate.db"
    TEST_DATABASE_URL: Optional[str] = None

    # Chapter partition (reference configuration: 0-5 free, 6-24 premium)
    FREE_CHAPTERS: List[int] = list(range(0, 6))
    PREMIUM_CHAPTERS: List[int] = list(range(6, 25))

    # Messages
    SUPPORTED_LANGUAGES: List[str] = ["en", "uz"]
    DEFAULT_LANGUAGE: str = "uz"

    # Key ledgers
    AUDIT_LOG_MAX_ENTRIES: int = 1000
    VALID_CODES_FILE: Optional[str] = None  # one code per line
    PUBLISHED_USED_DIGESTS_FILE: Optional[str] = None  # one digest per line

    # Activation workflow pacing (UX only; 0 disables)
    ACTIVATION_STAGE_DELAY_MS: int = 500
    ACTIVATION_FINAL_STAGE_DELAY_MS: int = 300

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def get_database_url(settings_obj: Optional[Settings] = None) -> Optional[str]:
    """Primary store URL; TEST_DATABASE_URL wins when set."""
    cfg = settings_obj or settings
    return getattr(cfg, "TEST_DATABASE_URL", None) or getattr(cfg, "DATABASE_URL", None)


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate configuration.

    In strict mode raise RuntimeError on the first problem; otherwise emit
    warnings only and return False when anything was wrong.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("coursegate")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []

    overlap = set(cfg.FREE_CHAPTERS) & set(cfg.PREMIUM_CHAPTERS)
    if overlap:
        problems.append(f"Chapters configured as both free and premium: {sorted(overlap)}")

    if cfg.DEFAULT_LANGUAGE not in cfg.SUPPORTED_LANGUAGES:
        problems.append(
            f"DEFAULT_LANGUAGE {cfg.DEFAULT_LANGUAGE!r} is not one of SUPPORTED_LANGUAGES {cfg.SUPPORTED_LANGUAGES}"
        )

    if cfg.AUDIT_LOG_MAX_ENTRIES <= 0:
        problems.append("AUDIT_LOG_MAX_ENTRIES must be positive")

    if cfg.ACTIVATION_STAGE_DELAY_MS < 0 or cfg.ACTIVATION_FINAL_STAGE_DELAY_MS < 0:
        problems.append("Activation stage delays must not be negative")

    if not get_database_url(cfg):
        problems.append("No DATABASE_URL configured; activation state will only last for this session")

    for message in problems:
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return not problems
