"""Tests for config coercion, env overrides and file round-trips."""

import json

import pytest

from aidwatch.crawler.config import (
    ConfigError,
    PipelineConfig,
    config_from_env,
    env_overrides,
    load_config,
    load_config_payload,
    save_config,
)


class TestFromDict:
    def test_string_values_are_coerced(self):
        config = PipelineConfig.from_dict(
            {
                "crawl_concurrency": "8",
                "respect_robots": "off",
                "max_age_hours": "1.5",
                "reindex_strategy": " FULL ",
                "cron": "   ",
            }
        )

        assert config.crawl_concurrency == 8
        assert config.respect_robots is False
        assert config.max_age_hours == 1.5
        assert config.max_age_seconds == 5400.0
        assert config.reindex_strategy == "full"
        assert config.cron is None

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(ConfigError, match="Unknown config keys"):
            PipelineConfig.from_dict({"crawl_concurency": 2})

    @pytest.mark.parametrize(
        "payload",
        [
            {"respect_robots": "maybe"},
            {"retries": "many"},
            {"crawl_concurrency": 0},
            {"reindex_strategy": "sometimes"},
            {"embedding_budget_shrink": 1.0},
            {"vector_prefix": "  "},
        ],
    )
    def test_invalid_values(self, payload):
        with pytest.raises(ConfigError):
            PipelineConfig.from_dict(payload)


class TestEnvironment:
    def test_millisecond_values_become_seconds(self):
        overrides = env_overrides({"CRAWLER_TIMEOUT_MS": "2500", "CRAWLER_BACKOFF_MS": "250"})
        assert overrides == {"timeout_seconds": 2.5, "retry_backoff_seconds": 0.25}

    def test_empty_values_are_ignored(self):
        assert env_overrides({"REDIS_URL": "  ", "CRAWLER_CRON": ""}) == {}

    def test_env_overlays_base(self):
        config = config_from_env(
            {"CRAWLER_MAX_CONCURRENCY": "3", "EMBEDDER_ENABLED": "false", "DATABASE_URL": "sqlite://"},
            base={"crawl_concurrency": 9, "batch_limit": 10},
        )

        assert config.crawl_concurrency == 3
        assert config.batch_limit == 10
        assert config.embedder_enabled is False
        assert config.database_url == "sqlite://"

    def test_invalid_millisecond_value(self):
        with pytest.raises(ConfigError, match="CRAWLER_TIMEOUT_MS"):
            env_overrides({"CRAWLER_TIMEOUT_MS": "soon"})


class TestRuntimeValidation:
    def test_missing_credentials_are_listed(self):
        config = PipelineConfig()
        with pytest.raises(ConfigError) as excinfo:
            config.validate_runtime()

        message = str(excinfo.value)
        assert "database_url" in message
        assert "embedding_api_key" in message
        assert "redis_url" in message

    def test_dry_run_does_not_need_vector_store(self):
        PipelineConfig(database_url="sqlite://", embedding_api_key="k", dry_run=True).validate_runtime()

    def test_embedder_disabled_needs_only_database(self):
        PipelineConfig(database_url="sqlite://", embedder_enabled=False).validate_runtime()


def test_to_dict_redacts_api_key():
    config = PipelineConfig(embedding_api_key="secret")
    assert config.to_dict()["embedding_api_key"] == "***"
    assert config.to_dict(redact_secrets=False)["embedding_api_key"] == "secret"


class TestFiles:
    def test_yaml_round_trip(self, tmp_path):
        path = tmp_path / "conf" / "aidwatch.yaml"
        save_config(PipelineConfig(batch_limit=25, cron="*/30 * * * *"), path)

        loaded = load_config(path)

        assert loaded.batch_limit == 25
        assert loaded.cron == "*/30 * * * *"

    def test_json_payload(self, tmp_path):
        path = tmp_path / "aidwatch.json"
        path.write_text(json.dumps({"keep_history": True}), encoding="utf-8")

        assert load_config_payload(path) == {"keep_history": True}
        assert load_config(path).keep_history is True

    def test_empty_yaml_is_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == PipelineConfig()

    def test_unsupported_suffix(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "aidwatch.toml")

    def test_top_level_list_is_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path)
