"""Configuration loader with YAML support and environment overrides.

All settings live in one YAML file grouped by component; an
``environments`` section holds per-environment overrides selected by
argument or by the SEO_SENTINEL_ENV variable.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from pydantic import BaseModel, Field, field_validator

from ..auditors.structure import StructureAuditorConfig
from ..auditors.visual import VisualAuditorConfig
from ..capture.browser_factory import BrowserEngineType, DEFAULT_USER_AGENT
from ..errors import SentinelError
from ..models.audit import AuditConfig
from ..models.crawl import CrawlConfig


logger = logging.getLogger(__name__)


ENVIRONMENT_VARIABLE = "SEO_SENTINEL_ENV"


class ConfigLoadError(SentinelError):
    """Exception raised when configuration loading fails."""
    pass


class BaselineStoreConfig(BaseModel):
    """Where baselines and diff images are stored."""

    backend: str = Field(default="local", description="local or memory")
    path: str = Field(default="./baselines")
    diff_path: Optional[str] = Field(default=None, description="Defaults to <path>/diffs")

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        if v not in ("local", "memory"):
            raise ValueError(f"Unknown baseline backend: {v}")
        return v


class BrowserSettings(BaseModel):
    """Browser launch and context settings."""

    engine: str = BrowserEngineType.CHROMIUM
    headless: bool = True
    slow_mo: int = Field(default=0, ge=0)
    viewport_width: int = Field(default=1920, gt=0)
    viewport_height: int = Field(default=1080, gt=0)
    user_agent: Optional[str] = DEFAULT_USER_AGENT
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    ignore_https_errors: bool = False
    locale: Optional[str] = "en-US"
    timezone: Optional[str] = None
    stealth: bool = Field(default=True, description="Mask automation fingerprints before navigation")
    human_simulation: bool = Field(default=True, description="Scroll and move the mouse after load")

    @field_validator('engine')
    @classmethod
    def validate_engine(cls, v):
        if v not in (BrowserEngineType.CHROMIUM, BrowserEngineType.FIREFOX, BrowserEngineType.WEBKIT):
            raise ValueError(f"Unsupported browser engine: {v}")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level


class SentinelConfig(BaseModel):
    """Complete SEO Sentinel configuration."""

    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    structure: StructureAuditorConfig = Field(default_factory=StructureAuditorConfig)
    visual: VisualAuditorConfig = Field(default_factory=VisualAuditorConfig)
    baselines: BaselineStoreConfig = Field(default_factory=BaselineStoreConfig)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(
    config_path: Optional[str] = None,
    environment: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> SentinelConfig:
    """Load SentinelConfig from a YAML file with environment overrides.

    Args:
        config_path: Path to YAML config file. If None, uses config/sentinel.yaml.
        environment: Environment name for override selection. If None, uses ENV var.
        overrides: Additional configuration overrides to apply.

    Returns:
        Validated SentinelConfig instance.

    Raises:
        ConfigLoadError: If configuration loading or validation fails.

    Example:
        >>> config = load_config("config/sentinel.yaml", environment="development")
        >>> config.crawl.max_urls
        20
    """
    if config_path is None:
        project_root = Path(__file__).parents[3]
        config_path = project_root / "config" / "sentinel.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigLoadError(f"Config file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML config: {e}")
    except IOError as e:
        raise ConfigLoadError(f"Failed to read config file: {e}")

    if not isinstance(config_data, dict):
        raise ConfigLoadError("Config file must contain a YAML dictionary")

    if environment is None:
        environment = os.getenv(ENVIRONMENT_VARIABLE, "production")

    environments = config_data.pop("environments", None) or {}
    if environment in environments:
        config_data = _deep_merge(config_data, environments[environment] or {})
        logger.info(f"Applied environment overrides for: {environment}")

    if overrides:
        config_data = _deep_merge(config_data, overrides)
        logger.debug("Applied additional configuration overrides")

    try:
        return SentinelConfig(**config_data)
    except Exception as e:
        raise ConfigLoadError(f"Invalid configuration in {config_path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def create_default_config() -> Dict[str, Any]:
    """Create a default configuration dictionary suitable for YAML serialization."""
    config_data = SentinelConfig().model_dump(mode="json")
    config_data["environments"] = {
        "development": {
            "crawl": {"max_urls": 20, "max_depth": 2, "page_load_delay": 2},
            "audit": {"concurrent_limit": 1, "page_load_delay": 2},
            "logging": {"level": "DEBUG"},
        },
        "test": {
            "crawl": {"max_urls": 5, "max_depth": 1, "page_load_delay": 0},
            "audit": {
                "concurrent_limit": 1,
                "page_load_delay": 0,
                "request_delay_min": 0,
                "request_delay_max": 0,
                "cooldown_every": 0,
            },
            "baselines": {"backend": "memory"},
        },
    }
    return config_data


def save_default_config(output_path: str) -> None:
    """Save default configuration to a YAML file.

    Raises:
        ConfigLoadError: If file writing fails.
    """
    config_data = create_default_config()

    try:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            yaml.dump(config_data, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Saved default configuration to: {output_path}")
    except IOError as e:
        raise ConfigLoadError(f"Failed to write config file: {e}")
