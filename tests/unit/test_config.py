"""Unit tests for environment-driven configuration."""
import pytest
from pydantic import ValidationError

from partmatch.config import ExternalStageSettings, MatchingSettings, QueueSettings, Settings


class TestMatchingSettings:
    def test_defaults(self):
        config = MatchingSettings()
        assert config.fuzzy_threshold == 0.65
        assert config.exact_similarity_floor == 0.60
        assert config.max_candidates_per_item == 200
        assert config.extract_line_codes is True
        assert config.apply_line_code_mappings is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("MATCH_FUZZY_THRESHOLD", "0.7")
        monkeypatch.setenv("MATCH_EXACT_SIMILARITY_VALIDATION", "false")

        config = MatchingSettings()

        assert config.fuzzy_threshold == 0.7
        assert config.exact_similarity_validation is False

    def test_out_of_range_threshold_is_rejected(self, monkeypatch):
        monkeypatch.setenv("MATCH_FUZZY_THRESHOLD", "1.5")
        with pytest.raises(ValidationError):
            MatchingSettings()


class TestQueueSettings:
    def test_defaults(self):
        limits = QueueSettings()
        assert (limits.global_max, limits.per_user_max, limits.per_project_max) == (5, 2, 1)
        assert limits.external_stage_max == 3

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("JOBQ_PER_PROJECT_MAX", "2")
        assert QueueSettings().per_project_max == 2


class TestSettings:
    def test_redis_url_is_built(self):
        config = Settings(redis_host="cache", redis_port=6380, redis_password="secret", redis_url=None)
        assert config.redis_url == "redis://:secret@cache:6380/0"

    def test_explicit_redis_url_wins(self):
        config = Settings(redis_url="redis://elsewhere:6379/2")
        assert config.redis_url == "redis://elsewhere:6379/2"

    def test_stage_settings_disabled_by_default(self):
        stage = ExternalStageSettings()
        assert not stage.ai_enabled
        assert not stage.web_search_enabled

    def test_engine_options_follow_pool_settings(self, monkeypatch):
        from partmatch.db.base import engine_options

        monkeypatch.setenv("DB_POOL_SIZE", "4")
        monkeypatch.setenv("DB_MAX_OVERFLOW", "0")

        options = engine_options(Settings())

        assert options["pool_size"] == 4
        assert options["max_overflow"] == 0
        assert options["pool_pre_ping"] is True
