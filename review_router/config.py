"""
Configuration loading for the review router.

Two sources:
- the repository's review config file (YAML) -> ReviewConfig
- process environment / .env -> RouterSettings
"""

import hashlib
import json
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigValidationError
from .logging_config import get_logger
from .schemas.config import ReviewConfig

logger = get_logger(__name__)

DEFAULT_CONFIG_FILENAME = ".review-router.yml"


class RouterSettings(BaseSettings):
    """
    Process-level settings loaded from environment variables.

    Repository review policy lives in the YAML config; this holds what
    differs per machine or CI runner.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="REVIEW_ROUTER_",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_format: str = "json"
    cache_dir: Optional[str] = None
    config_path: str = DEFAULT_CONFIG_FILENAME
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    # Spend so far this month, reported by the CI job that tracks it
    monthly_spent_usd: float = 0.0


@lru_cache()
def get_settings() -> RouterSettings:
    """Get cached settings instance."""
    load_dotenv()
    return RouterSettings()


def parse_config(data: Optional[dict]) -> ReviewConfig:
    """
    Validate a decoded config mapping.

    Raises:
        ConfigValidationError: if the mapping does not match the schema
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"config root must be a mapping, got {type(data).__name__}"
        )
    try:
        return ReviewConfig.model_validate(data)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{err['loc']}: {err['msg']}" for err in errors)
        raise ConfigValidationError(f"invalid review config: {summary}", errors) from e


def load_config(path: Union[str, Path, None] = None) -> ReviewConfig:
    """
    Load the review config from a YAML file.

    A missing file yields the default configuration.

    Raises:
        ConfigValidationError: if the file is not valid YAML or fails validation
    """
    config_path = Path(path or DEFAULT_CONFIG_FILENAME)
    if not config_path.exists():
        logger.info(f"No config at {config_path}, using defaults")
        return ReviewConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"{config_path}: invalid YAML: {e}") from e

    config = parse_config(data)
    logger.info(f"Loaded config from {config_path} ({len(config.passes)} passes)")
    return config


def hash_config(config: ReviewConfig) -> str:
    """Stable 16 hex char digest of a config, used in cache keys."""
    canonical = json.dumps(config.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
