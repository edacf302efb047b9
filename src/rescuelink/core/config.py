"""
Configuration Management System for RescueLink

Handles loading configuration from environment variables, config files,
and provides validation and runtime updates.
"""

import copy
import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass


class ConfigurationManager:
    """
    Manages system configuration with support for multiple sources,
    validation, and runtime updates.
    """

    ENV_PREFIX = "RESCUELINK_"

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.watchers: Dict[str, List[Callable]] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "RescueLink",
                "version": "1.0.0",
                "debug": False,
                "log_level": "INFO"
            },
            "database": {
                "path": "data/rescuelink.db",
                "max_connections": 10
            },
            "logging": {
                "level": "INFO",
                "file": "logs/rescuelink.log",
                "max_size": "10MB",
                "backup_count": 5,
                "console": True,
                "console_level": "INFO"
            },
            "sos": {
                "default_radius_km": 5,
                "public_default_radius_km": 10,
                "public_max_radius_km": 10000,
                "escalation": {
                    "enabled": True,
                    "check_interval_seconds": 30
                }
            },
            "web": {
                "enabled": True,
                "host": "0.0.0.0",
                "port": 8080,
                "admin_ids": []
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        # Local config file
        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        # Default config file
        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        # Built-in defaults (lowest priority)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: copy.deepcopy(self.defaults)
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config = {}

        # Lowest priority first, so later sources override earlier ones
        for source in sorted(self.sources, key=lambda x: x.priority):
            source_config = source.loader()
            if source_config:
                merged_config = self._deep_merge(merged_config, source_config)
                self.logger.debug(f"Loaded configuration from {source.name}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        # Map environment variables to config keys
        env_mappings = {
            "DEBUG": "app.debug",
            "LOG_LEVEL": "app.log_level",
            "DB_PATH": "database.path",
            "DB_MAX_CONNECTIONS": "database.max_connections",
            "LOG_FILE": "logging.file",
            "WEB_HOST": "web.host",
            "WEB_PORT": "web.port",
            "WEB_ADMIN_IDS": "web.admin_ids",
            "DEFAULT_RADIUS_KM": "sos.default_radius_km",
            "ESCALATION_ENABLED": "sos.escalation.enabled",
            "ESCALATION_INTERVAL": "sos.escalation.check_interval_seconds"
        }

        for suffix, config_key in env_mappings.items():
            env_var = f"{self.ENV_PREFIX}{suffix}"
            value = os.getenv(env_var)
            if value is not None:
                # Convert string values to appropriate types
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit():
                    value = int(value)
                else:
                    try:
                        value = float(value)
                    except ValueError:
                        pass

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            raise ConfigurationError(f"Cannot load {path}: {e}")

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        # Validate required sections
        required_sections = ['app', 'database', 'sos']
        for section in required_sections:
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        # Validate web port
        web_port = self.get('web.port')
        if web_port and (not isinstance(web_port, int) or web_port < 1 or web_port > 65535):
            errors.append(f"Invalid web port: {web_port}")

        # Validate log level
        log_level = self.get('app.log_level', 'INFO')
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(log_level).upper() not in valid_levels:
            errors.append(f"Invalid log level: {log_level}")

        # Validate SOS radii
        radius = self.get('sos.default_radius_km')
        if not isinstance(radius, (int, float)) or radius <= 0:
            errors.append(f"Invalid default radius: {radius}")

        max_radius = self.get('sos.public_max_radius_km')
        if not isinstance(max_radius, (int, float)) or max_radius <= 0:
            errors.append(f"Invalid public max radius: {max_radius}")

        interval = self.get('sos.escalation.check_interval_seconds')
        if not isinstance(interval, (int, float)) or interval <= 0:
            errors.append(f"Invalid escalation check interval: {interval}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

        # Notify watchers
        for callback in self.watchers.get(key, []):
            try:
                callback(key, value)
            except Exception as e:
                self.logger.error(f"Error in config watcher for {key}: {e}")

    def watch(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Watch for configuration changes"""
        if key not in self.watchers:
            self.watchers[key] = []
        self.watchers[key].append(callback)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})

    def export_config(self, file_path: str) -> None:
        """Export current configuration to file"""
        path = Path(file_path)

        if path.suffix.lower() not in ['.yaml', '.yml', '.json']:
            raise ConfigurationError(f"Unsupported file format: {path.suffix}")

        try:
            with open(path, 'w') as f:
                if path.suffix.lower() == '.json':
                    json.dump(self.config, f, indent=2)
                else:
                    yaml.dump(self.config, f, default_flow_style=False, indent=2)

            self.logger.info(f"Configuration exported to {path}")
        except OSError as e:
            self.logger.error(f"Failed to export configuration: {e}")
            raise ConfigurationError(f"Export failed: {e}")
