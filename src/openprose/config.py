"""Configuration for the OpenProse toolchain.

Options are pydantic models so that values read from TOML files are
validated the same way as values passed in code. Configuration files
are looked up with priority: local (`.openprose/config.toml` in the
working directory) > global (`~/.openprose/config.toml`).
"""

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from openprose.log import get_logger

logger = get_logger(__name__)

CONFIG_DIR_NAME = ".openprose"
"""Directory holding configuration files, locally and in the home directory."""

CONFIG_FILE_NAME = "config.toml"

DEFAULT_MODELS = ("sonnet", "opus", "haiku")
"""Model tiers accepted by `model:` unless configured otherwise."""


class CompilerOptions(BaseModel):
    """Options for canonical compilation."""

    target: str = "canonical"
    """Output target. Only "canonical" is supported by `compile`."""

    preserve_comments: bool = False
    """Keep standalone comments in the canonical output."""

    source_maps: bool = True
    """Record canonical-to-original line mappings."""

    indent: int = Field(default=2, ge=1, le=8)
    """Spaces per indentation level in the output."""


class ValidatorOptions(BaseModel):
    """Options for semantic validation."""

    models: list[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    """Accepted values for `model:` properties."""

    available_skills: list[str] | None = None
    """Skill names resolved by the installer; None skips the check."""

    max_retry_warning: int = Field(default=10, ge=1)
    """Retry counts above this produce a warning."""

    @field_validator("models")
    @classmethod
    def require_models(cls, v: list[str]) -> list[str]:
        """Reject an empty model list."""
        if not v:
            msg = "at least one model must be configured"
            raise ValueError(msg)
        return v


class ProseConfig(BaseModel):
    """Complete toolchain configuration."""

    compiler: CompilerOptions = Field(default_factory=CompilerOptions)
    validator: ValidatorOptions = Field(default_factory=ValidatorOptions)


def _read_toml(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.debug("Failed to load config %s: %s", path, e)
        return None


def load_config(working_dir: Path | None = None) -> ProseConfig:
    """Load configuration with priority: local > global > defaults.

    The first readable and valid file wins; files are not merged.

    Args:
        working_dir: Directory to look for `.openprose/config.toml` in.
            Defaults to the current directory.

    Returns:
        The loaded configuration, or defaults when no file applies.

    """
    base = working_dir if working_dir is not None else Path.cwd()
    candidates = [
        base / CONFIG_DIR_NAME / CONFIG_FILE_NAME,
        Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME,
    ]
    for path in candidates:
        data = _read_toml(path)
        if data is None:
            continue
        try:
            config = ProseConfig.model_validate(data)
        except ValidationError as e:
            logger.debug("Ignoring invalid config %s: %s", path, e)
            continue
        logger.debug("Loaded config from %s", path)
        return config

    return ProseConfig()
