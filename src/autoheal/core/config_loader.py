"""Configuration loading and validation utilities for the locator engine."""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .exceptions import ConfigurationError
from .models.healing_models import HealingConfiguration, ExecutionStrategy, CacheType

logger = logging.getLogger(__name__)


class HealingConfigLoader:
    """Loads and validates locator engine configuration from YAML."""

    DEFAULT_CONFIG = {
        "autoheal": {
            "performance": {
                "execution_strategy": "smart_sequential",
                "locate_timeout": 60.0,
                "validation_timeout": 5.0,
                "disambiguation_timeout": 5.0,
                "thread_pool_size": 8
            },
            "cache": {
                "type": "memory",
                "trust_threshold": 0.7,
                "probe_timeout": 5.0,
                "verify_fingerprint": True,
                "ttl_seconds": 86400,
                "max_size": 10000,
                "file_path": "data/autoheal_cache.json",
                "redis_url": None,
                "key_version": "v1"
            },
            "resilience": {
                "circuit_breaker_failure_threshold": 5,
                "circuit_breaker_open_timeout": 60.0,
                "max_retries": 3,
                "retry_backoff": 1.0,
                "max_concurrent_calls": 4
            },
            "ai": {
                "timeout": 30.0,
                "visual_analysis_enabled": True,
                "max_html_chars": 120000
            }
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        if config_path is None:
            from .config import settings
            config_path = settings.AUTOHEAL_CONFIG_PATH
        self.config_path = Path(config_path)
        self._config_cache: Optional[HealingConfiguration] = None
        self._config_file_mtime: Optional[float] = None

    def load_config(self, force_reload: bool = False) -> HealingConfiguration:
        """Load and validate the locator engine configuration.

        Args:
            force_reload: Ignore the mtime-based cache

        Returns:
            HealingConfiguration: Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not force_reload and self._config_cache and self._is_config_current():
            return self._config_cache

        try:
            config_data = self._load_config_file()
            healing_config = self._parse_healing_config(config_data)
            self._validate_config(healing_config)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Failed to load locator configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}", cause=e) from e

        self._config_cache = healing_config
        if self.config_path.exists():
            self._config_file_mtime = self.config_path.stat().st_mtime

        logger.info(f"Loaded locator configuration from {self.config_path}")
        return healing_config

    def save_config(self, config: HealingConfiguration) -> None:
        """Save configuration to file.

        Args:
            config: Configuration to save

        Raises:
            ConfigurationError: If saving fails
        """
        self._validate_config(config)
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            config_data = {
                "autoheal": self._config_to_dict(config)
            }

            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_data, f, default_flow_style=False, indent=2)

            self._config_cache = config
            self._config_file_mtime = self.config_path.stat().st_mtime

            logger.info(f"Saved locator configuration to {self.config_path}")

        except OSError as e:
            logger.error(f"Failed to save locator configuration: {e}")
            raise ConfigurationError(f"Configuration saving failed: {e}", cause=e) from e

    def _load_config_file(self) -> Dict[str, Any]:
        """Read the YAML file merged over ``DEFAULT_CONFIG``."""
        if not self.config_path.exists():
            logger.info(f"Config file {self.config_path} not found, using defaults")
            return self._deep_merge(self.DEFAULT_CONFIG, {})

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}", cause=e) from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}", cause=e) from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        return self._deep_merge(self.DEFAULT_CONFIG, config_data)

    def _parse_healing_config(self, config_data: Dict[str, Any]) -> HealingConfiguration:
        """Parse configuration data into a HealingConfiguration object."""
        section = config_data.get("autoheal", {})
        performance = section.get("performance", {})
        cache = section.get("cache", {})
        resilience = section.get("resilience", {})
        ai = section.get("ai", {})

        try:
            execution_strategy = ExecutionStrategy(performance["execution_strategy"])
        except ValueError as e:
            raise ConfigurationError(f"Invalid execution strategy: {e}", cause=e) from e
        try:
            cache_type = CacheType(cache["type"])
        except ValueError as e:
            raise ConfigurationError(f"Invalid cache type: {e}", cause=e) from e

        return HealingConfiguration(
            execution_strategy=execution_strategy,
            cache_trust_threshold=float(cache["trust_threshold"]),
            cache_probe_timeout=float(cache["probe_timeout"]),
            verify_fingerprint=bool(cache["verify_fingerprint"]),
            validation_timeout=float(performance["validation_timeout"]),
            disambiguation_timeout=float(performance["disambiguation_timeout"]),
            ai_timeout=float(ai["timeout"]),
            locate_timeout=float(performance["locate_timeout"]),
            ai_max_retries=int(resilience["max_retries"]),
            ai_retry_backoff=float(resilience["retry_backoff"]),
            max_concurrent_ai_calls=int(resilience["max_concurrent_calls"]),
            circuit_breaker_failure_threshold=int(resilience["circuit_breaker_failure_threshold"]),
            circuit_breaker_open_timeout=float(resilience["circuit_breaker_open_timeout"]),
            visual_analysis_enabled=bool(ai["visual_analysis_enabled"]),
            max_html_chars=int(ai["max_html_chars"]),
            cache_type=cache_type,
            cache_ttl_seconds=int(cache["ttl_seconds"]),
            cache_max_size=int(cache["max_size"]),
            cache_file_path=str(cache["file_path"]),
            redis_url=cache.get("redis_url"),
            cache_key_version=str(cache["key_version"]),
            thread_pool_size=int(performance["thread_pool_size"])
        )

    def _config_to_dict(self, config: HealingConfiguration) -> Dict[str, Any]:
        """Convert HealingConfiguration to the nested file structure."""
        return {
            "performance": {
                "execution_strategy": config.execution_strategy.value,
                "locate_timeout": config.locate_timeout,
                "validation_timeout": config.validation_timeout,
                "disambiguation_timeout": config.disambiguation_timeout,
                "thread_pool_size": config.thread_pool_size
            },
            "cache": {
                "type": config.cache_type.value,
                "trust_threshold": config.cache_trust_threshold,
                "probe_timeout": config.cache_probe_timeout,
                "verify_fingerprint": config.verify_fingerprint,
                "ttl_seconds": config.cache_ttl_seconds,
                "max_size": config.cache_max_size,
                "file_path": config.cache_file_path,
                "redis_url": config.redis_url,
                "key_version": config.cache_key_version
            },
            "resilience": {
                "circuit_breaker_failure_threshold": config.circuit_breaker_failure_threshold,
                "circuit_breaker_open_timeout": config.circuit_breaker_open_timeout,
                "max_retries": config.ai_max_retries,
                "retry_backoff": config.ai_retry_backoff,
                "max_concurrent_calls": config.max_concurrent_ai_calls
            },
            "ai": {
                "timeout": config.ai_timeout,
                "visual_analysis_enabled": config.visual_analysis_enabled,
                "max_html_chars": config.max_html_chars
            }
        }

    def _validate_config(self, config: HealingConfiguration) -> None:
        """Validate configuration values.

        Raises:
            ConfigurationError: If validation fails
        """
        errors = []

        if config.cache_trust_threshold < 0.0 or config.cache_trust_threshold > 1.0:
            errors.append("cache trust_threshold must be between 0.0 and 1.0")

        for name, value in (
            ("cache probe_timeout", config.cache_probe_timeout),
            ("validation_timeout", config.validation_timeout),
            ("disambiguation_timeout", config.disambiguation_timeout),
            ("ai timeout", config.ai_timeout),
            ("locate_timeout", config.locate_timeout),
            ("circuit_breaker_open_timeout", config.circuit_breaker_open_timeout)
        ):
            if value <= 0:
                errors.append(f"{name} must be positive")

        if config.ai_max_retries < 1 or config.ai_max_retries > 10:
            errors.append("max_retries must be between 1 and 10")

        if config.ai_retry_backoff < 0:
            errors.append("retry_backoff must not be negative")

        if config.max_concurrent_ai_calls < 1 or config.max_concurrent_ai_calls > 64:
            errors.append("max_concurrent_calls must be between 1 and 64")

        if config.circuit_breaker_failure_threshold < 1:
            errors.append("circuit_breaker_failure_threshold must be at least 1")

        if config.cache_ttl_seconds < 1:
            errors.append("cache ttl_seconds must be at least 1")

        if config.cache_max_size < 1:
            errors.append("cache max_size must be at least 1")

        if config.thread_pool_size < 1 or config.thread_pool_size > 64:
            errors.append("thread_pool_size must be between 1 and 64")

        if config.cache_type == CacheType.REDIS and not config.redis_url:
            errors.append("redis_url is required when cache type is 'redis'")

        if not config.cache_key_version:
            errors.append("cache key_version must not be empty")

        if errors:
            raise ConfigurationError("Configuration validation failed: " + "; ".join(errors))

    def _is_config_current(self) -> bool:
        if not self.config_path.exists():
            return self._config_file_mtime is None

        current_mtime = self.config_path.stat().st_mtime
        return self._config_file_mtime == current_mtime

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries without mutating either."""
        result = {
            key: self._deep_merge(value, {}) if isinstance(value, dict) else value
            for key, value in base.items()
        }

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def load_healing_config(config_path: Optional[str] = None) -> HealingConfiguration:
    """Load configuration from a YAML file, falling back to defaults.

    Args:
        config_path: Path to the YAML file, defaults to AUTOHEAL_CONFIG_PATH

    Returns:
        HealingConfiguration: Validated configuration
    """
    return HealingConfigLoader(config_path).load_config()
