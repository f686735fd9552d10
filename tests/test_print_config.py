import json

from autoreply.config import Settings
from tools import print_config


def test_secrets_are_masked():
    settings = Settings(
        database_url="postgresql://user:pw@db/autoreply",
        redis_url=None,
        gateway_api_key="evo-key",
        webhook_secret="s3cret",
        meta_verify_token="hub-token",
    )

    config = print_config.get_pipeline_config(settings)

    assert config["database_url"] == "***"
    assert config["gateway_api_key"] == "***"
    assert config["webhook_secret"] == "***"
    assert config["meta_verify_token"] == "***"
    assert config["redis_url"] is None
    assert config["generation_breaker"]["failure_threshold"] == 3


def test_log_config_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_JSON", "true")
    monkeypatch.setenv("LOG_RETENTION_DAYS", "14")
    monkeypatch.delenv("LOG_ROTATE_UTC", raising=False)

    config = print_config.get_log_config()

    assert config == {
        "log_dir": str(tmp_path),
        "log_level": "DEBUG",
        "log_json": True,
        "retention_days": 14,
        "rotate_utc": False,
    }


def test_main_prints_json(monkeypatch, capsys):
    monkeypatch.setattr(print_config, "load_dotenv", lambda: None)
    monkeypatch.setenv("WORKER_CONCURRENCY", "4")
    monkeypatch.setenv("ENABLED_TOOLS", "check_stock,search_inventory")
    monkeypatch.setenv("EVOLUTION_API_KEY", "evo-key")

    print_config.main()

    data = json.loads(capsys.readouterr().out)
    assert data["pipeline"]["worker_concurrency"] == 4
    assert data["pipeline"]["enabled_tools"] == ["check_stock", "search_inventory"]
    assert data["pipeline"]["gateway_api_key"] == "***"
    assert set(data["logging"]) == {
        "log_dir",
        "log_level",
        "log_json",
        "retention_days",
        "rotate_utc",
    }
