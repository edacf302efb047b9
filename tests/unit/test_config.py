"""
Unit tests for configuration management
"""

import pytest
import yaml

from rescuelink.core.config import ConfigurationError, ConfigurationManager


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))


class TestConfigurationManager:
    """Test layered configuration loading"""

    def test_defaults_only(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        assert manager.get("sos.default_radius_km") == 5
        assert manager.get("sos.escalation.enabled") is True
        assert manager.get("web.port") == 8080
        assert manager.get("missing.key", "fallback") == "fallback"

    def test_local_file_overrides_default_file(self, temp_dir):
        write_yaml(temp_dir / "default.yaml", {"sos": {"default_radius_km": 7}, "web": {"port": 9000}})
        write_yaml(temp_dir / "config.yaml", {"web": {"port": 9100}})

        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        assert manager.get("sos.default_radius_km") == 7
        assert manager.get("web.port") == 9100
        # Sibling keys survive the merge
        assert manager.get("sos.public_max_radius_km") == 10000

    def test_environment_overrides_files(self, temp_dir, monkeypatch):
        write_yaml(temp_dir / "config.yaml", {"web": {"port": 9100}})
        monkeypatch.setenv("RESCUELINK_WEB_PORT", "9200")
        monkeypatch.setenv("RESCUELINK_ESCALATION_ENABLED", "false")
        monkeypatch.setenv("RESCUELINK_DEFAULT_RADIUS_KM", "2.5")
        monkeypatch.setenv("RESCUELINK_WEB_ADMIN_IDS", "admin-1,admin-2")

        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        assert manager.get("web.port") == 9200
        assert manager.get("sos.escalation.enabled") is False
        assert manager.get("sos.default_radius_km") == 2.5
        assert manager.get("web.admin_ids") == "admin-1,admin-2"

    @pytest.mark.parametrize("override", [
        {"web": {"port": 70000}},
        {"app": {"log_level": "LOUD"}},
        {"sos": {"default_radius_km": 0}},
        {"sos": {"escalation": {"check_interval_seconds": -5}}},
    ])
    def test_validation_errors(self, temp_dir, override):
        write_yaml(temp_dir / "config.yaml", override)
        manager = ConfigurationManager(str(temp_dir))

        with pytest.raises(ConfigurationError):
            manager.load_config()

    def test_unreadable_yaml(self, temp_dir):
        (temp_dir / "config.yaml").write_text("sos: [unclosed")
        manager = ConfigurationManager(str(temp_dir))

        with pytest.raises(ConfigurationError):
            manager.load_config()

    def test_set_notifies_watchers_without_touching_defaults(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        changes = []
        manager.watch("sos.default_radius_km", lambda key, value: changes.append((key, value)))

        manager.set("sos.default_radius_km", 8)

        assert changes == [("sos.default_radius_km", 8)]
        assert manager.get_section("sos")["default_radius_km"] == 8
        assert manager.defaults["sos"]["default_radius_km"] == 5

    def test_export_round_trip(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        target = temp_dir / "exported.yaml"
        manager.export_config(str(target))

        assert yaml.safe_load(target.read_text())["web"]["port"] == 8080
        with pytest.raises(ConfigurationError):
            manager.export_config(str(temp_dir / "exported.ini"))
