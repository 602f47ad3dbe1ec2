"""Tests for CLI config layering and exit codes."""

import pytest

from aidwatch import refresh
from aidwatch.crawler.config import ENV_KEYS, ConfigError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(refresh, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(refresh, "install_signal_handlers", lambda stop_event: None)


def write_config(tmp_path, text):
    path = tmp_path / "aidwatch.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_cli_beats_environment_beats_file(tmp_path):
    path = write_config(
        tmp_path,
        "database_url: sqlite:///file.db\ncrawl_concurrency: 2\nscrape_concurrency: 2\nembedder_enabled: false\n",
    )
    args = refresh.parse_args(["--config", str(path), "--crawl_concurrency", "7"])

    config = refresh.build_config(
        args,
        environ={"CRAWLER_MAX_CONCURRENCY": "5", "SCRAPER_MAX_CONCURRENCY": "3", "CRAWLER_TIMEOUT_MS": "1500"},
    )

    assert config.crawl_concurrency == 7
    assert config.scrape_concurrency == 3
    assert config.timeout_seconds == 1.5
    assert config.database_url == "sqlite:///file.db"
    assert config.dry_run is False


def test_url_inspection_forces_dry_run(tmp_path):
    path = write_config(tmp_path, "database_url: sqlite:///file.db\n")
    args = refresh.parse_args(["--config", str(path), "--url", "https://www.navarra.es/es/tramites/on/-/line/x"])

    config = refresh.build_config(args, environ={})

    assert config.dry_run is True


def test_missing_runtime_configuration_raises():
    with pytest.raises(ConfigError):
        refresh.build_config(refresh.parse_args([]), environ={})


def test_main_returns_2_on_bad_config():
    assert refresh.main([]) == 2


def test_main_runs_once_against_empty_store(tmp_path, capsys):
    path = write_config(
        tmp_path,
        f"database_url: sqlite:///{tmp_path / 'cli.db'}\nembedder_enabled: false\ncron: '*/5 * * * *'\n",
    )

    code = refresh.main(["--config", str(path), "--create_schema", "--once", "--print_summary_json"])

    assert code == 0
    output = capsys.readouterr().out
    assert "=== Refresh Complete ===" in output
    assert '"candidates": 0' in output
