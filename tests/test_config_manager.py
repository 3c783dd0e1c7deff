import json

from core.config_manager import APP_HOME_ENV, ConfigManager, get_app_data_dir


def test_defaults_when_file_is_missing(tmp_path):
    config = ConfigManager(tmp_path / "config.json")

    assert config.get("server.port") == 61080
    assert config.get("relay.endpoint_param") == "endpoint"
    assert config.get("relay.connect_timeout") == 120
    assert config.get("relay.unknown_caller_ip") == "Unknown"


def test_file_values_are_merged_over_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"server": {"port": 9000}, "relay": {"connect_timeout": 5}}), encoding="utf-8")

    config = ConfigManager(path)

    assert config.get("server.port") == 9000
    assert config.get("server.host") == "127.0.0.1"
    assert config.get("relay.connect_timeout") == 5
    assert config.get("relay.endpoint_param") == "endpoint"


def test_broken_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    assert ConfigManager(path).get("server.port") == 61080


def test_get_missing_key_returns_default(tmp_path):
    config = ConfigManager(tmp_path / "config.json")
    assert config.get("server.nope", "fallback") == "fallback"
    assert config.get("relay.endpoint_param.deeper") is None


def test_set_and_save(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = ConfigManager(path)

    assert config.set("relay.endpoint_param", "target", save=True)

    assert json.loads(path.read_text(encoding="utf-8"))["relay"]["endpoint_param"] == "target"
    assert ConfigManager(path).get_relay_config()["endpoint_param"] == "target"


def test_reset_to_defaults(tmp_path):
    config = ConfigManager(tmp_path / "config.json")
    config.set("server.port", 1)

    assert config.reset_to_defaults()
    assert config.get_server_config()["port"] == 61080


def test_app_data_dir_honours_environment(tmp_path, monkeypatch):
    target = tmp_path / "relay-home"
    monkeypatch.setenv(APP_HOME_ENV, str(target))

    assert get_app_data_dir() == target
    assert target.is_dir()
