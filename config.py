#!/usr/bin/env python3
"""
Configuration management for NewsBits.

This module centralizes all configuration loading, validation, and management.
It handles environment variables, the optional secrets file and the static
feed source list in feeds.yaml, and provides a clean interface for accessing
configuration values throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

# Category names accepted in feeds.yaml (mirrors models.Category values)
KNOWN_CATEGORIES = (
    "breaking", "tech", "business", "sports",
    "entertainment", "science", "health", "world",
)


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers that
    inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    # aiohttp access/client chatter is rarely useful at INFO
    getLogger("aiohttp").setLevel(max(level, WARNING))

    return getLogger("NewsBits")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "storage", "summarizer")

    Returns:
        A logger named "NewsBits.{name}"
    """
    return getLogger(f"NewsBits.{name}")


logger = _setup_global_logger()


class Config:
    """Configuration manager for NewsBits.

    Loading order:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE environment variable is set)
    4. feeds.yaml for the fixed source list and cache thresholds
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()
        self._load_feed_sources()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.0) -> float:
        """Validate and parse a non-negative float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "newsbits.db")
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; NewsBits/1.0)")

        # HTTP request configuration
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 1)
        # Retries after the first attempt (2 retries = 3 attempts)
        self.MAX_RETRIES = self._validate_positive_int("MAX_RETRIES", 2, 0)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 1.0, 0.0)
        self.FETCH_CONCURRENCY = self._validate_positive_int("FETCH_CONCURRENCY", 5, 1)

        # Refresh loop configuration (external timer stand-in)
        self.FETCH_INTERVAL_MINUTES = self._validate_positive_int("FETCH_INTERVAL_MINUTES", 15, 1)
        self.REFRESH_BUDGET_SECONDS = self._validate_positive_int("REFRESH_BUDGET_SECONDS", 25, 1)

        # Summarization
        self.SUMMARY_MAX_LENGTH = self._validate_positive_int("SUMMARY_MAX_LENGTH", 140, 10)
        self.SMART_SUMMARY_MAX_LENGTH = 160
        self.HEADLINE_MAX_LENGTH = 90

        # Azure OpenAI configuration for the optional summarization collaborator
        self.AZURE_ENDPOINT = environ.get("AZURE_ENDPOINT")
        if self.AZURE_ENDPOINT:
            normalized = self.AZURE_ENDPOINT.strip()
            if normalized.lower().startswith("https://"):
                normalized = normalized[8:]
            elif normalized.lower().startswith("http://"):
                normalized = normalized[7:]
            normalized = normalized.strip("/")
            if normalized != self.AZURE_ENDPOINT:
                logger.info(f"Normalized AZURE_ENDPOINT to '{normalized}'")
            self.AZURE_ENDPOINT = normalized
        self.OPENAI_API_KEY = environ.get("OPENAI_API_KEY")
        self.DEPLOYMENT_NAME = environ.get("DEPLOYMENT_NAME")
        self.OPENAI_API_VERSION = environ.get("OPENAI_API_VERSION")
        self.SUMMARIZER_MAX_RETRIES = self._validate_positive_int("SUMMARIZER_MAX_RETRIES", 1, 0)
        self.SUMMARIZER_RETRY_DELAY_BASE = self._validate_positive_float("SUMMARIZER_RETRY_DELAY_BASE", 1.0, 0.1)

        base_dir = path.dirname(path.abspath(__file__))
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.SCHEMA_FILE_SIZE_LIMIT_MB = 1
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Expected format is a top-level mapping, optionally nested under
        `environment`:

        ```yaml
        AZURE_ENDPOINT: "https://your-resource.openai.azure.com/"
        OPENAI_API_KEY: "your-api-key"
        ```
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env for secrets")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config
        if isinstance(secrets_config.get('environment'), dict):
            env_vars = secrets_config['environment']

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")
        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _parse_threshold(self, section: Dict[str, Any], key: str, default: int, min_val: int, max_val: int) -> int:
        raw = section.get(key) if isinstance(section, dict) else None
        if raw is None:
            return default
        try:
            value = int(str(raw).strip())
        except ValueError:
            logger.warning(f"Invalid {key} value '{raw}' in feeds.yaml; using default {default}")
            return default
        if value < min_val or value > max_val:
            logger.warning(f"{key} must be within [{min_val}, {max_val}]; using default {default} (got {raw})")
            return default
        return value

    def _load_feed_sources(self) -> None:
        """Populate FEED_SOURCES and cache thresholds from feeds.yaml.

        Any failure results in an empty source list and default thresholds.
        """
        feeds_path = self.FEEDS_CONFIG_PATH
        config_data = self._safe_read_yaml(feeds_path, 1024 * 1024, 'feeds')
        self.FEED_SOURCES: List[Dict[str, str]] = []
        self.MAX_CACHED_ARTICLES = 200
        self.FIRST_FETCH_ITEMS_PER_SOURCE = 50
        if not isinstance(config_data, dict):
            return

        feeds_section = config_data.get('feeds')
        if not isinstance(feeds_section, dict):
            logger.warning(f"No valid feeds found in {feeds_path}")
        else:
            for slug, feed_cfg in feeds_section.items():
                if not isinstance(feed_cfg, dict) or not feed_cfg.get('url'):
                    logger.warning(f"Skipping invalid feed configuration for '{slug}': {feed_cfg}")
                    continue
                category = str(feed_cfg.get('category', 'world')).strip().lower()
                if category not in KNOWN_CATEGORIES:
                    logger.warning(f"Unknown category '{category}' for feed '{slug}'; using 'world'")
                    category = 'world'
                self.FEED_SOURCES.append({
                    'slug': str(slug),
                    'url': str(feed_cfg['url']).strip(),
                    'name': str(feed_cfg.get('name') or slug),
                    'category': category,
                })
                logger.debug(f"Loaded feed {slug}: {feed_cfg['url']}")
            logger.info(f"Loaded {len(self.FEED_SOURCES)} feeds from {feeds_path}")

        thresholds = config_data.get('thresholds') or {}
        self.MAX_CACHED_ARTICLES = self._parse_threshold(thresholds, 'max_cached_articles', 200, 20, 500)
        self.FIRST_FETCH_ITEMS_PER_SOURCE = self._parse_threshold(thresholds, 'first_fetch_items', 50, 1, 1000)
        logger.debug(
            "Loaded thresholds: MAX_CACHED_ARTICLES=%s FIRST_FETCH_ITEMS_PER_SOURCE=%s",
            self.MAX_CACHED_ARTICLES,
            self.FIRST_FETCH_ITEMS_PER_SOURCE,
        )

    def reload_feed_sources(self):
        """Reload feed sources from configuration file."""
        logger.info("Reloading feed sources configuration")
        self._load_feed_sources()

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "feed_count": len(self.FEED_SOURCES),
            "http_timeout": self.HTTP_TIMEOUT,
            "max_retries": self.MAX_RETRIES,
            "fetch_concurrency": self.FETCH_CONCURRENCY,
            "fetch_interval_minutes": self.FETCH_INTERVAL_MINUTES,
            "max_cached_articles": self.MAX_CACHED_ARTICLES,
            "first_fetch_items_per_source": self.FIRST_FETCH_ITEMS_PER_SOURCE,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
            "has_azure_endpoint": bool(self.AZURE_ENDPOINT),
            "has_openai_key": bool(self.OPENAI_API_KEY),
        }


# Global configuration instance
config = Config()
