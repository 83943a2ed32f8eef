import pytest

from livefeed.core.errors import ConfigurationError
from livefeed.services.config import load_config, parse_config


class TestConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LIVEFEED_DATABASE_PATH", raising=False)
        monkeypatch.delenv("REDDIT_USER_AGENT", raising=False)
        config = parse_config({})

        assert config.maintenance.max_live_items == 50
        assert config.maintenance.enrichment_batch_size == 5
        assert config.maintenance.archive_age_hours == 24
        assert config.pipeline.publishing_interval_ms == 2000
        assert config.matching.duplicate_threshold > config.matching.update_threshold
        assert config.pipeline.origins == []

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("LIVEFEED_DATABASE_PATH", "/tmp/other.db")
        monkeypatch.setenv("REDDIT_USER_AGENT", "custom-agent/2.0")
        config = parse_config({"DATABASE_PATH": "data/x.db", "source": {"timeout": 5}})

        assert config.DATABASE_PATH == "/tmp/other.db"
        assert config.source.user_agent == "custom-agent/2.0"
        assert config.source.timeout == 5

    def test_invalid_values_raise_configuration_error(self):
        with pytest.raises(ConfigurationError):
            parse_config({"pipeline": {"fetch_limit": 500}})
        with pytest.raises(ConfigurationError):
            parse_config({"pipeline": {"content_mode": "everything"}})

    def test_load_from_yaml(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LIVEFEED_DATABASE_PATH", raising=False)
        path = tmp_path / "config.yml"
        path.write_text(
            "DATABASE_PATH: feed.db\n"
            "pipeline:\n"
            "  origins: [worldnews, science]\n"
            "maintenance:\n"
            "  max_live_items: 20\n"
        )

        config = load_config(str(path))

        assert config.DATABASE_PATH == "feed.db"
        assert config.pipeline.origins == ["worldnews", "science"]
        assert config.maintenance.max_live_items == 20
