"""
config.py - Configuration for the grouped jobs table
"""
import os
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from jobs_table.types.query import SortDirection


@dataclass
class JobsTableConfig:
    """Configuration for the grouped jobs table"""

    # Lookup backend configuration
    backend_uri: str = ":memory:"
    backend_type: str = "duckdb"
    table_name: str = "jobs"

    # Caching configuration
    cache_type: str = "memory"  # memory, redis or none
    redis_config: Dict[str, Any] = field(default_factory=dict)
    default_cache_ttl: int = 300

    # Table configuration
    default_page_size: int = 30
    page_size_options: List[int] = field(default_factory=lambda: [10, 20, 30, 40, 50])
    max_grouping_depth: int = 10
    job_order_field: str = "job_id"
    job_order_direction: str = SortDirection.ASC
    group_order_field: str = "name"
    group_order_direction: str = SortDirection.ASC

    # Service configuration
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    load_sample_data: bool = False
    sample_jobs: int = 1000

    def from_env(self) -> 'JobsTableConfig':
        """Load configuration from environment variables"""
        config = JobsTableConfig()

        config.backend_uri = os.getenv('BACKEND_URI', config.backend_uri)
        config.backend_type = os.getenv('BACKEND_TYPE', config.backend_type)
        config.table_name = os.getenv('JOBS_TABLE', config.table_name)

        config.cache_type = os.getenv('CACHE_TYPE', config.cache_type)
        config.default_cache_ttl = int(os.getenv('CACHE_TTL', str(config.default_cache_ttl)))

        if config.cache_type == 'redis':
            config.redis_config = {
                'host': os.getenv('REDIS_HOST', 'localhost'),
                'port': int(os.getenv('REDIS_PORT', '6379')),
                'db': int(os.getenv('REDIS_DB', '0')),
                'password': os.getenv('REDIS_PASSWORD', None)
            }

        config.default_page_size = int(os.getenv('PAGE_SIZE', str(config.default_page_size)))
        options = os.getenv('PAGE_SIZE_OPTIONS')
        if options:
            config.page_size_options = [int(size) for size in options.split(',')]
        config.max_grouping_depth = int(os.getenv('MAX_GROUPING_DEPTH', str(config.max_grouping_depth)))

        config.log_level = os.getenv('LOG_LEVEL', config.log_level)
        config.api_host = os.getenv('API_HOST', config.api_host)
        config.api_port = int(os.getenv('API_PORT', str(config.api_port)))
        config.load_sample_data = os.getenv('LOAD_SAMPLE_DATA', 'false').lower() in ('1', 'true', 'yes')
        config.sample_jobs = int(os.getenv('SAMPLE_JOBS', str(config.sample_jobs)))

        return config

    def validate(self) -> None:
        """Validate configuration settings"""
        errors = []

        if self.cache_type not in ('memory', 'redis', 'none'):
            errors.append(f"unknown cache_type: {self.cache_type}")

        if self.default_cache_ttl <= 0:
            errors.append("default_cache_ttl must be positive")

        if self.default_page_size <= 0:
            errors.append("default_page_size must be positive")

        if not self.page_size_options or any(size <= 0 for size in self.page_size_options):
            errors.append("page_size_options must be non-empty and positive")

        if self.max_grouping_depth <= 0:
            errors.append("max_grouping_depth must be positive")

        for name in ('job_order_direction', 'group_order_direction'):
            if getattr(self, name) not in (SortDirection.ASC, SortDirection.DESC):
                errors.append(f"{name} must be ASC or DESC")

        if self.sample_jobs < 0:
            errors.append("sample_jobs must not be negative")

        if errors:
            raise ValueError(f"Configuration validation errors: {'; '.join(errors)}")


class ConfigManager:
    """Manager for configuration loading and validation"""

    def __init__(self):
        self.config: Optional[JobsTableConfig] = None

    def load_config(self, config_source: Optional[str] = None) -> JobsTableConfig:
        """Load configuration from various sources"""
        if config_source == 'env':
            self.config = JobsTableConfig().from_env()
        else:
            self.config = JobsTableConfig()

        self.config.validate()
        return self.config

    def get_config(self) -> JobsTableConfig:
        """Get the loaded configuration"""
        if self.config is None:
            self.config = self.load_config()
        return self.config


# Global configuration manager
config_manager = ConfigManager()


def get_config() -> JobsTableConfig:
    """Get the global configuration"""
    return config_manager.get_config()
