#!/usr/bin/env python3
"""
Configuration Manager for the IntegrationKit garbage collector

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml

from kitgc.error_utils import ConfigValidationError


class ConfigManager:
    """Manages configuration for the kit garbage collector"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "kubernetes": {"namespace": "default"},
            "camel": {
                "group": "camel.apache.org",
                "version": "v1",
                "default_platform": "camel-k",
                "operator_version": "2.0.0",
            },
            "registry": {"username": None, "password": None, "timeout": 300},
            "analysis": {"output_dir": "reports"},
            "retry": {
                "max_retries": 3,
                "initial_delay": 1.0,
                "max_delay": 60.0,
                "exponential_base": 2.0,
                "jitter": True,
            },
            "reports": {"retention_plan": "kit-retention-plan.json"},
            "security": {"dry_run_by_default": False, "require_confirmation": True},
            "cache": {
                "enabled": True,
                "platform_options_ttl": 3600,
                "platform_options_max_size": 100,
            },
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # Kubernetes configuration
    def get_namespace(self) -> str:
        """Get the namespace holding kits and integrations"""
        return os.environ.get("KIT_NAMESPACE") or self.config["kubernetes"]["namespace"]

    def get_camel_group(self) -> str:
        return self.config["camel"]["group"]

    def get_camel_version(self) -> str:
        return self.config["camel"]["version"]

    def get_default_platform(self) -> str:
        """Platform name assumed when a kit does not record one"""
        return self.config["camel"]["default_platform"]

    def get_operator_version(self) -> str:
        """Operator version mixed into kit digests"""
        return os.environ.get("OPERATOR_VERSION") or str(self.config["camel"]["operator_version"])

    # Registry configuration
    def get_registry_username(self) -> Optional[str]:
        return os.environ.get("REGISTRY_USERNAME") or self.config["registry"].get("username")

    def get_registry_password(self) -> Optional[str]:
        return os.environ.get("REGISTRY_PASSWORD") or self.config["registry"].get("password")

    def get_registry_timeout(self) -> int:
        """Get per-request registry timeout, with type coercion"""
        timeout = self.config["registry"].get("timeout", 300)
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"registry.timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    def get_output_dir(self) -> str:
        """Get output directory from config"""
        return self.config["analysis"]["output_dir"]

    # Retry configuration
    def get_max_retries(self) -> int:
        """Get max retries from config, with type coercion"""
        retries = self.config.get("retry", {}).get("max_retries", 3)
        try:
            return int(retries)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_retries must be an integer, got: {retries} (type: {type(retries).__name__})"
            )

    def get_retry_initial_delay(self) -> float:
        """Get initial retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("initial_delay", 1.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.initial_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_max_delay(self) -> float:
        """Get max retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("max_delay", 60.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_exponential_base(self) -> float:
        """Get exponential base for retry backoff from config, with type coercion"""
        base = self.config.get("retry", {}).get("exponential_base", 2.0)
        try:
            return float(base)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.exponential_base must be a number, got: {base} (type: {type(base).__name__})"
            )

    def get_retry_jitter(self) -> bool:
        """Get whether to use jitter in retry delays from config"""
        return bool(self.config.get("retry", {}).get("jitter", True))

    # Cache configuration
    def is_cache_enabled(self) -> bool:
        return bool(self.config.get("cache", {}).get("enabled", True))

    def get_cache_platform_options_ttl(self) -> int:
        """Get registry options cache TTL from config, with type coercion"""
        ttl = self.config.get("cache", {}).get("platform_options_ttl", 3600)
        try:
            return int(ttl)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"cache.platform_options_ttl must be an integer, got: {ttl} (type: {type(ttl).__name__})"
            )

    def get_cache_platform_options_max_size(self) -> int:
        size = self.config.get("cache", {}).get("platform_options_max_size", 100)
        try:
            return int(size)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"cache.platform_options_max_size must be an integer, got: {size} (type: {type(size).__name__})"
            )

    # Reports
    def get_retention_plan_path(self) -> str:
        """Get path of the JSON retention plan report"""
        path = self.config["reports"]["retention_plan"]
        if os.path.isabs(path):
            return path
        return os.path.join(self.get_output_dir(), path)

    # Security configuration
    def is_dry_run_by_default(self) -> bool:
        return bool(self.config["security"]["dry_run_by_default"])

    def requires_confirmation(self) -> bool:
        return bool(self.config["security"]["require_confirmation"])

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If any value is invalid
        """
        errors = []
        warnings = []

        namespace = self.get_namespace()
        if not self._is_valid_k8s_name(namespace):
            errors.append(f"kubernetes.namespace '{namespace}' is not a valid Kubernetes name")

        default_platform = self.get_default_platform()
        if not self._is_valid_k8s_name(default_platform):
            errors.append(f"camel.default_platform '{default_platform}' is not a valid Kubernetes name")

        if not self.get_camel_group() or not self.get_camel_version():
            errors.append("camel.group and camel.version are required")

        output_dir = self.get_output_dir()
        if not output_dir or not str(output_dir).strip():
            errors.append("analysis.output_dir is required and cannot be empty")

        username, password = self.get_registry_username(), self.get_registry_password()
        if bool(username) != bool(password):
            warnings.append("only one of registry username/password is set; registry calls will be anonymous")

        try:
            registry_timeout = self.get_registry_timeout()
            if registry_timeout < 1:
                errors.append(f"registry.timeout must be a positive integer (seconds), got: {registry_timeout}")
        except ConfigValidationError as e:
            errors.append(e.message)

        try:
            max_retries = self.get_max_retries()
            if max_retries < 0:
                errors.append(f"retry.max_retries must be a non-negative integer, got: {max_retries}")
            elif max_retries > 10:
                warnings.append(f"max_retries is very high ({max_retries}), operations may take a long time")

            initial_delay = self.get_retry_initial_delay()
            if initial_delay < 0:
                errors.append(f"retry.initial_delay must be a non-negative number, got: {initial_delay}")

            max_delay = self.get_retry_max_delay()
            if max_delay < 0:
                errors.append(f"retry.max_delay must be a non-negative number, got: {max_delay}")
            elif max_delay < initial_delay:
                errors.append(f"retry.max_delay ({max_delay}) must be >= retry.initial_delay ({initial_delay})")

            exponential_base = self.get_retry_exponential_base()
            if exponential_base < 1.0:
                errors.append(f"retry.exponential_base must be >= 1.0, got: {exponential_base}")
        except ConfigValidationError as e:
            errors.append(e.message)

        if self.is_cache_enabled():
            try:
                if self.get_cache_platform_options_ttl() < 0:
                    errors.append("cache.platform_options_ttl must be a non-negative integer")
            except ConfigValidationError as e:
                errors.append(e.message)

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg, details={"config_file": self.config_file})

    def _is_valid_k8s_name(self, name: str) -> bool:
        """Validate Kubernetes resource name format"""
        if not name:
            return False
        # Kubernetes names: lowercase alphanumeric and hyphens, max 253 chars
        pattern = r"^[a-z0-9]([a-z0-9\-\.]*[a-z0-9])?$"
        return bool(re.match(pattern, name)) and len(name) <= 253


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
config_manager = ConfigManager(
    validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes")
)
