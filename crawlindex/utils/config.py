"""
Configuration management for the crawl-and-index service.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    user_agent: str = "CrawlIndexBot/1.0"
    max_workers: int = 16
    frontier_queue_size: int = 1000
    max_concurrent_requests: int = 32
    request_timeout: int = 30
    retry_attempts: int = 2
    retry_backoff: float = 0.5
    politeness_delay: float = 0.0
    max_crawl_delay: float = 10.0
    respect_robots_txt: bool = True
    max_pages: int = 0
    max_content_bytes: int = 10 * 1024 * 1024
    same_domain_only: bool = False
    allowed_domains: List[str] = field(default_factory=list)
    blocked_domains: List[str] = field(default_factory=list)
    allowed_mimes: List[str] = field(default_factory=list)


@dataclass
class IndexConfig:
    """Configuration for the full-text index."""
    path: str = "data/index.sqlite3"
    commit_interval: int = 50
    max_results: int = 10


@dataclass
class ServiceConfig:
    """Configuration for the RPC service."""
    host: str = "127.0.0.1"
    port: int = 50051
    reject_concurrent_origin: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawlindex.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = True


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> 'Config':
        """Build a Config from parsed YAML, using defaults for missing sections."""
        config_data = config_data or {}
        return cls(
            crawler=CrawlerConfig(**(config_data.get('crawler') or {})),
            index=IndexConfig(**(config_data.get('index') or {})),
            service=ServiceConfig(**(config_data.get('service') or {})),
            logging=LoggingConfig(**(config_data.get('logging') or {})),
            monitoring=MonitoringConfig(**(config_data.get('monitoring') or {})),
        )


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
            config_data = yaml.safe_load(file)

        if config_data is not None and not isinstance(config_data, dict):
            raise ValueError(f"Configuration root must be a mapping: {self.config_path}")

        try:
            self._config = Config.from_dict(config_data)
        except TypeError as e:
            raise ValueError(f"Invalid configuration key: {e}") from e

        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")

        crawler = self._config.crawler

        if crawler.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if crawler.frontier_queue_size < 1:
            raise ValueError("frontier_queue_size must be at least 1")

        if crawler.max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")

        if crawler.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

        if crawler.retry_attempts < 0:
            raise ValueError("retry_attempts must be non-negative")

        if crawler.retry_backoff < 0:
            raise ValueError("retry_backoff must be non-negative")

        if crawler.politeness_delay < 0 or crawler.max_crawl_delay < 0:
            raise ValueError("politeness_delay and max_crawl_delay must be non-negative")

        if crawler.max_pages < 0:
            raise ValueError("max_pages must be non-negative (0 disables the limit)")

        if crawler.max_content_bytes < 1:
            raise ValueError("max_content_bytes must be at least 1")

        if self._config.index.commit_interval < 1:
            raise ValueError("commit_interval must be at least 1")

        if self._config.index.max_results < 1:
            raise ValueError("max_results must be at least 1")

        if not 0 < self._config.service.port < 65536:
            raise ValueError("service port must be between 1 and 65535")

        logging.getLogger(__name__).info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


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
