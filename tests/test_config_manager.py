"""Unit tests for kitgc/config_manager.py"""

import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))


# Patch the global config_manager creation to avoid validation during import
@pytest.fixture(autouse=True)
def patch_config_manager_import():
    """Patch the config_manager module to avoid auto-validation on import"""
    with patch.dict(os.environ, {"SKIP_CONFIG_VALIDATION": "true"}):
        yield


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("KIT_NAMESPACE", "OPERATOR_VERSION", "REGISTRY_USERNAME", "REGISTRY_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def write_config(config):
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config, f)
        return f.name


class TestConfigManagerInitialization:
    """Tests for ConfigManager initialization"""

    def test_loads_default_config_when_file_not_found(self, clean_env):
        """Test that defaults are used when config file doesn't exist"""
        from kitgc.config_manager import ConfigManager

        cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False)

        assert cm.get_namespace() == "default"
        assert cm.get_camel_group() == "camel.apache.org"
        assert cm.get_camel_version() == "v1"
        assert cm.get_default_platform() == "camel-k"
        assert cm.get_registry_timeout() == 300
        assert cm.is_cache_enabled() is True

    def test_merges_user_config_with_defaults(self, clean_env):
        """Test that user config is merged with defaults"""
        from kitgc.config_manager import ConfigManager

        temp_path = write_config({"kubernetes": {"namespace": "camel"}, "retry": {"max_retries": 5}})
        try:
            cm = ConfigManager(config_file=temp_path, validate=False)
            assert cm.get_namespace() == "camel"
            assert cm.get_max_retries() == 5
            # Defaults in the same section are preserved
            assert cm.get_retry_initial_delay() == 1.0
        finally:
            os.unlink(temp_path)

    def test_environment_variables_override_config(self, clean_env):
        """Test that environment variables take precedence"""
        from kitgc.config_manager import ConfigManager

        clean_env.setenv("KIT_NAMESPACE", "from-env")
        clean_env.setenv("OPERATOR_VERSION", "2.4.0")
        clean_env.setenv("REGISTRY_USERNAME", "robot")

        temp_path = write_config({"kubernetes": {"namespace": "camel"}, "registry": {"username": "someone"}})
        try:
            cm = ConfigManager(config_file=temp_path, validate=False)
            assert cm.get_namespace() == "from-env"
            assert cm.get_operator_version() == "2.4.0"
            assert cm.get_registry_username() == "robot"
        finally:
            os.unlink(temp_path)

    def test_config_file_from_environment(self, clean_env):
        from kitgc.config_manager import ConfigManager

        temp_path = write_config({"camel": {"default_platform": "my-platform"}})
        try:
            clean_env.setenv("CONFIG_FILE", temp_path)
            cm = ConfigManager(validate=False)
            assert cm.config_file == temp_path
            assert cm.get_default_platform() == "my-platform"
        finally:
            os.unlink(temp_path)

    def test_invalid_yaml_falls_back_to_defaults(self, clean_env):
        from kitgc.config_manager import ConfigManager

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("kubernetes: [unclosed\n")
            temp_path = f.name
        try:
            cm = ConfigManager(config_file=temp_path, validate=False)
            assert cm.get_namespace() == "default"
        finally:
            os.unlink(temp_path)


class TestConfigManagerGetters:
    """Tests for typed getters"""

    def test_string_numbers_are_coerced(self, clean_env):
        from kitgc.config_manager import ConfigManager

        cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False)
        cm.config["registry"]["timeout"] = "120"
        cm.config["retry"]["max_delay"] = "30"

        assert cm.get_registry_timeout() == 120
        assert cm.get_retry_max_delay() == 30.0

    def test_invalid_number_raises(self, clean_env):
        from kitgc.config_manager import ConfigManager
        from kitgc.error_utils import ConfigValidationError

        cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False)
        cm.config["retry"]["max_retries"] = "many"

        with pytest.raises(ConfigValidationError, match="retry.max_retries must be an integer"):
            cm.get_max_retries()

    def test_relative_report_path_goes_to_output_dir(self, clean_env):
        from kitgc.config_manager import ConfigManager

        cm = ConfigManager(config_file="/nonexistent/config.yaml", validate=False)

        assert cm.get_retention_plan_path() == os.path.join("reports", "kit-retention-plan.json")

        cm.config["reports"]["retention_plan"] = "/tmp/plan.json"
        assert cm.get_retention_plan_path() == "/tmp/plan.json"


class TestConfigValidation:
    """Tests for validate_config"""

    def test_defaults_are_valid(self, clean_env):
        from kitgc.config_manager import ConfigManager

        ConfigManager(config_file="/nonexistent/config.yaml", validate=True)

    def test_invalid_namespace(self, clean_env):
        from kitgc.config_manager import ConfigManager
        from kitgc.error_utils import ConfigValidationError

        clean_env.setenv("KIT_NAMESPACE", "Not_Valid")

        with pytest.raises(ConfigValidationError, match="kubernetes.namespace"):
            ConfigManager(config_file="/nonexistent/config.yaml", validate=True)

    def test_collects_every_error(self, clean_env):
        from kitgc.config_manager import ConfigManager
        from kitgc.error_utils import ConfigValidationError

        temp_path = write_config({
            "registry": {"timeout": 0},
            "retry": {"initial_delay": 10, "max_delay": 5},
        })
        try:
            with pytest.raises(ConfigValidationError) as exc_info:
                ConfigManager(config_file=temp_path, validate=True)
        finally:
            os.unlink(temp_path)

        assert "registry.timeout must be a positive integer" in exc_info.value.message
        assert "retry.max_delay (5.0) must be >= retry.initial_delay (10.0)" in exc_info.value.message

    def test_half_credentials_only_warn(self, clean_env, caplog):
        from kitgc.config_manager import ConfigManager

        clean_env.setenv("REGISTRY_USERNAME", "robot")

        ConfigManager(config_file="/nonexistent/config.yaml", validate=True)

        assert "only one of registry username/password is set" in caplog.text
