"""
Configuration management for the search engine.
"""

import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml

from ..exceptions import ConfigurationError


DEFAULT_BOOTSTRAP_URL = "https://moz.com/top500/"


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    number_of_crawlers: int = 4
    user_agent: str = "SearchEngineBot/1.0"
    request_timeout: int = 30
    max_in_flight_linking: int = 8
    linking_timeout: int = 600
    bootstrap_url: str = DEFAULT_BOOTSTRAP_URL
    max_content_size: int = 10 * 1024 * 1024
    empty_frontier_delay: float = 1.0


@dataclass
class DatabaseConfig:
    """Configuration for the relational store."""
    url: str = "sqlite+aiosqlite:///data/searchengine.db"
    max_retries: int = 8
    retry_delay: float = 0.05
    echo: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/searchengine.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = False
    prometheus_port: int = 8000


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig
    database: DatabaseConfig
    logging: LoggingConfig
    monitoring: MonitoringConfig


_SECTIONS = {
    'crawler': CrawlerConfig,
    'database': DatabaseConfig,
    'logging': LoggingConfig,
    'monitoring': MonitoringConfig,
}


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Couldn't read or parse `{self.config_path}`: {e}") from e

        self._config = config_from_dict(config_data)
        try:
            self._validate_config()
        except (TypeError, AttributeError) as e:
            raise ConfigurationError(f"Invalid value type in `{self.config_path}`: {e}") from e
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ConfigurationError("Configuration not loaded")

        crawler = self._config.crawler
        if crawler.number_of_crawlers < 1:
            raise ConfigurationError("number_of_crawlers must be at least 1")

        if crawler.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")

        if crawler.max_in_flight_linking < 1:
            raise ConfigurationError("max_in_flight_linking must be at least 1")

        if crawler.linking_timeout <= 0:
            raise ConfigurationError("linking_timeout must be positive")

        if crawler.max_content_size <= 0:
            raise ConfigurationError("max_content_size must be positive")

        if crawler.empty_frontier_delay < 0:
            raise ConfigurationError("empty_frontier_delay must be non-negative")

        if not crawler.user_agent or not crawler.user_agent.strip():
            raise ConfigurationError("user_agent must not be empty")

        bootstrap = urlparse(crawler.bootstrap_url)
        if bootstrap.scheme not in ('http', 'https') or not bootstrap.hostname:
            raise ConfigurationError(f"bootstrap_url is not an http(s) URL: {crawler.bootstrap_url}")

        database = self._config.database
        if not database.url:
            raise ConfigurationError("database url must be provided")

        if database.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")

        if database.retry_delay < 0:
            raise ConfigurationError("retry_delay must be non-negative")

        if not isinstance(logging.getLevelName(self._config.logging.level.upper()), int):
            raise ConfigurationError(f"Unknown log level: {self._config.logging.level}")

        logging.info("Configuration validation passed")


def config_from_dict(config_data: Dict[str, Any]) -> Config:
    """Build a Config from parsed YAML, rejecting unknown sections and keys."""
    if not isinstance(config_data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    unknown = set(config_data) - set(_SECTIONS)
    if unknown:
        raise ConfigurationError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

    sections = {}
    for name, section_cls in _SECTIONS.items():
        values = config_data.get(name) or {}
        if not isinstance(values, dict):
            raise ConfigurationError(f"Section `{name}` must be a mapping")

        allowed = {f.name for f in fields(section_cls)}
        unknown_keys = set(values) - allowed
        if unknown_keys:
            raise ConfigurationError(
                f"Unknown keys in `{name}`: {', '.join(sorted(unknown_keys))}"
            )
        sections[name] = section_cls(**values)

    return Config(**sections)


def write_default_config(path: str) -> Path:
    """Write a configuration template to fill in before the first run."""
    config_path = Path(path)
    if config_path.exists():
        raise ConfigurationError(f"Refusing to overwrite existing configuration: {config_path}")

    template = {name: asdict(section_cls()) for name, section_cls in _SECTIONS.items()}
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as file:
        yaml.safe_dump(template, file, sort_keys=False)
    return config_path


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
