"""
Gradelink Provider Configuration

Immutable Tool Provider settings validated with pydantic, plus a file loader
that detects JSON, YAML and TOML by suffix (or by content when the suffix is
unknown). Credentials are never read from the environment by the core.

Copyright (c) 2025 Gradelink Contributors
"""

import json
import logging
from pathlib import Path
from typing import Any, Final, Optional, Union

import toml
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gradelink.errors import ConfigurationError


logger = logging.getLogger(__name__)

PACKAGE_VERSION: Final[str] = "1.0.0"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0
DEFAULT_USER_AGENT: Final[str] = f"gradelink/{PACKAGE_VERSION}"


class ProviderConfiguration(BaseModel):
    """
    Immutable Tool Provider configuration.

    Invariants:
    - Consumer key and secret are non-blank and never change once loaded
    - Request timeout is strictly positive, so sends never block indefinitely
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    consumer_key: str = Field(..., min_length=1, description="OAuth1 consumer key")
    consumer_secret: str = Field(..., min_length=1, repr=False, description="OAuth1 consumer secret")

    timeout: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0, description="Outcome request timeout in seconds")
    user_agent: str = Field(DEFAULT_USER_AGENT, min_length=1)
    verify_tls: bool = Field(True, description="Verify the outcome service certificate")

    @field_validator("consumer_key", "consumer_secret")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


def _parse_content(content: str, suffix: str, source: Path) -> Any:
    if suffix == ".json":
        return json.loads(content)
    elif suffix in (".yml", ".yaml"):
        return yaml.safe_load(content)
    elif suffix == ".toml":
        return toml.loads(content)

    # Unknown suffix: try each format in turn
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass
    try:
        return toml.loads(content)
    except toml.TomlDecodeError:
        pass
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Unsupported configuration format: {source}") from e


def load_configuration(config_path: Union[str, Path],
                       section: Optional[str] = None) -> ProviderConfiguration:
    """
    Load and validate a provider configuration file.

    Args:
        config_path: Path to a JSON, YAML or TOML file
        section: Optional dotted path of a nested table holding the settings,
            e.g. ``"lti.outcomes"``

    Returns:
        Validated ProviderConfiguration

    Raises:
        ConfigurationError: The file is missing, unreadable, or does not
            describe a valid configuration.
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            {"path": str(path)}
        )

    try:
        content = path.read_text(encoding="utf-8")
        data = _parse_content(content, path.suffix.lower(), path)
    except (OSError, ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
        raise ConfigurationError(
            f"Configuration file could not be read: {e}",
            {"path": str(path)}
        ) from e

    if section:
        for key in section.split("."):
            if not isinstance(data, dict) or key not in data:
                raise ConfigurationError(
                    f"Configuration section not found: {section}",
                    {"path": str(path), "section": section}
                )
            data = data[key]

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a mapping: {path}",
            {"path": str(path)}
        )

    try:
        configuration = ProviderConfiguration.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in e.errors()})
        raise ConfigurationError(
            f"Invalid provider configuration: {', '.join(fields)}",
            {"path": str(path), "fields": fields}
        ) from e

    logger.info(f"Loaded provider configuration from {path}")
    return configuration


__all__ = [
    "ProviderConfiguration",
    "load_configuration",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_USER_AGENT",
    "PACKAGE_VERSION",
]
