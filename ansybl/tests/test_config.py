"""
Tests for configuration loading.
"""

import pytest
import yaml

from ansybl.config import (
    AnsyblConfig,
    BuilderConfig,
    ConfigManager,
    ParserConfig,
    ValidatorConfig,
    get_config_manager,
    reset_config_manager,
)


class TestSections:

    def test_defaults(self):
        config = AnsyblConfig()
        assert config.validator.include_warnings is True
        assert config.builder.summary_max_length == 200
        assert config.parser.signature_level == "all"
        assert config.signature.allow_timestamp_skew_seconds == 300.0
        assert config.monitoring.log_level == "WARNING"

    @pytest.mark.parametrize("factory", [
        lambda: ValidatorConfig(batch_max_workers=0),
        lambda: ValidatorConfig(schema_path="/nonexistent/schema.json"),
        lambda: BuilderConfig(default_version=""),
        lambda: BuilderConfig(summary_max_length=5),
        lambda: ParserConfig(signature_level="everything"),
        lambda: ParserConfig(content_filter="video"),
    ])
    def test_invalid_values_rejected(self, factory):
        with pytest.raises(ValueError):
            factory()


class TestConfigManager:

    def test_defaults_without_file_or_environment(self):
        config = ConfigManager(environ={}).load_config()
        assert config == AnsyblConfig()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "ansybl.yaml"
        path.write_text(yaml.safe_dump({
            "parser": {"verify_signatures": True, "signature_level": "items-only"},
            "builder": {"summary_max_length": 120},
        }))

        config = ConfigManager(str(path), environ={}).load_config()
        assert config.parser.verify_signatures is True
        assert config.parser.signature_level == "items-only"
        assert config.builder.summary_max_length == 120

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "ansybl.yaml"
        path.write_text(yaml.safe_dump({"parser": {"strict_mode": False, "signature_level": "feed-only"}}))

        manager = ConfigManager(str(path), environ={
            "ANSYBL_STRICT_MODE": "true",
            "ANSYBL_BATCH_MAX_WORKERS": "8",
            "ANSYBL_LOG_LEVEL": "",
        })
        config = manager.load_config()

        assert config.parser.strict_mode is True
        assert config.parser.signature_level == "feed-only"
        assert config.validator.batch_max_workers == 8
        assert config.monitoring.log_level == "WARNING"

    def test_unknown_section_rejected(self, tmp_path):
        path = tmp_path / "ansybl.yaml"
        path.write_text(yaml.safe_dump({"storage": {"path": "/tmp/feeds"}}))

        manager = ConfigManager(str(path), environ={})
        with pytest.raises(ValueError):
            manager.load_config()
        assert manager.validate_config() is False

    def test_get_config_caches(self):
        manager = ConfigManager(environ={})
        assert manager.get_config() is manager.get_config()

        reloaded = manager.reload_config()
        assert manager.get_config() is reloaded


class TestGlobalManager:

    def test_reads_config_path(self, tmp_path, monkeypatch):
        path = tmp_path / "ansybl.yaml"
        path.write_text(yaml.safe_dump({"monitoring": {"log_format": "console"}}))
        monkeypatch.setenv("ANSYBL_CONFIG_PATH", str(path))
        reset_config_manager()

        try:
            assert get_config_manager().get_config().monitoring.log_format == "console"
        finally:
            reset_config_manager()
