"""
Configuration management for the search engine crawler.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field, fields


DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

# Fetch time dominates and the frontier is shared, so the pool stays small.
MAX_WORKERS = 8


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seed_urls: List[str]
    target_pages: int = 500
    keyword_limit: int = 10
    description_length: int = 200
    max_links_per_page: int = 50
    workers: int = 4
    request_timeout: float = 5.0
    retry_attempts: int = 3
    retry_backoff_max: float = 2.0
    user_agent: str = DEFAULT_USER_AGENT
    renderer: str = 'http'
    max_duration: Optional[int] = None


@dataclass
class DatabaseConfig:
    """Configuration for the relational store."""
    path: str = 'data/searchbot.db'
    reset_on_start: bool = True


@dataclass
class ServerConfig:
    """Configuration for the query endpoint."""
    host: str = '127.0.0.1'
    port: int = 8082
    allowed_origin: str = '*'
    phrase_timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: str = 'logs/searchbot.log'
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(section_cls, data: Optional[Dict[str, Any]]):
    """Instantiate a config dataclass, rejecting unknown keys."""
    data = data or {}
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(
            f"Unknown {section_cls.__name__} option(s): {', '.join(sorted(unknown))}"
        )
    return section_cls(**data)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file) or {}

        self._config = config_from_dict(config_data)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def config_from_dict(config_data: Dict[str, Any]) -> Config:
    """Build and validate a Config from a parsed YAML mapping."""
    if 'crawler' not in config_data:
        raise ValueError("Configuration must contain a 'crawler' section")

    config = Config(
        crawler=_build_section(CrawlerConfig, config_data['crawler']),
        database=_build_section(DatabaseConfig, config_data.get('database')),
        server=_build_section(ServerConfig, config_data.get('server')),
        logging=_build_section(LoggingConfig, config_data.get('logging')),
        monitoring=_build_section(MonitoringConfig, config_data.get('monitoring')),
    )
    validate_config(config)
    return config


def validate_config(config: Config):
    """Validate configuration values."""
    crawler = config.crawler

    # Validate seed URLs
    if not crawler.seed_urls:
        raise ValueError("At least one seed URL must be provided")

    # Validate numeric values
    if crawler.target_pages < 1:
        raise ValueError("target_pages must be at least 1")

    if crawler.keyword_limit < 1:
        raise ValueError("keyword_limit must be at least 1")

    if crawler.description_length < 1:
        raise ValueError("description_length must be at least 1")

    if crawler.max_links_per_page < 0:
        raise ValueError("max_links_per_page must be non-negative")

    if not 1 <= crawler.workers <= MAX_WORKERS:
        raise ValueError(f"workers must be between 1 and {MAX_WORKERS}")

    if crawler.request_timeout <= 0:
        raise ValueError("request_timeout must be positive")

    if crawler.retry_attempts < 1:
        raise ValueError("retry_attempts must be at least 1")

    if crawler.retry_backoff_max < 0:
        raise ValueError("retry_backoff_max must be non-negative")

    if crawler.max_duration is not None and crawler.max_duration <= 0:
        raise ValueError("max_duration must be positive when set")

    # Validate renderer type
    if crawler.renderer not in ['http', 'browser']:
        raise ValueError("renderer must be 'http' or 'browser'")

    if config.server.phrase_timeout <= 0:
        raise ValueError("phrase_timeout must be positive")

    logging.info("Configuration validation passed")


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
