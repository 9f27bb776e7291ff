import gemini_pool.main as main_module
from gemini_pool.config import Constants, Settings, mask_key
from gemini_pool.main import build_app, create_app


def test_defaults_without_config():
    settings = Settings()

    assert settings.upstream_base_url == Constants.DEFAULT_UPSTREAM_URL
    assert settings.key_param == "key"
    assert settings.request_timeout is None
    assert settings.proxy_prefix == "/gemini"
    assert settings.passthrough_prefixes == ["/v1beta"]
    assert settings.keys == []
    assert settings.error_log_capacity == 1000
    assert settings.random_seed is None
    assert settings.port == 8000
    assert settings.log_level == "INFO"


def test_values_are_normalized():
    settings = Settings({
        "server": {"port": 9001, "log_level": "debug"},
        "upstream": {"base_url": "https://example.test/", "request_timeout": 30},
        "routing": {"proxy_prefix": "proxy/", "passthrough_prefixes": ["v1", "/v1beta/", 3, "/"]},
        "pool": {"keys": [" k1 ", "", 5, "k2"], "error_log_capacity": 10, "random_seed": 42},
    })

    assert settings.port == 9001
    assert settings.log_level == "DEBUG"
    assert settings.upstream_base_url == "https://example.test"
    assert settings.request_timeout == 30.0
    assert settings.proxy_prefix == "/proxy"
    assert settings.passthrough_prefixes == ["/v1", "/v1beta"]
    assert settings.keys == ["k1", "k2"]
    assert settings.error_log_capacity == 10
    assert settings.random_seed == 42


def test_invalid_values_fall_back_to_defaults():
    settings = Settings({
        "server": {"port": "eighty", "log_level": "LOUD"},
        "upstream": {"request_timeout": -1},
        "routing": "nonsense",
        "pool": {"keys": "k1", "error_log_capacity": 0, "random_seed": True},
    })

    assert settings.port == 8000
    assert settings.log_level == "INFO"
    assert settings.request_timeout is None
    assert settings.proxy_prefix == "/gemini"
    assert settings.keys == []
    assert settings.error_log_capacity == 1000
    assert settings.random_seed is None


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("pool:\n  keys:\n    - alpha\n    - beta\n", encoding="utf-8")

    settings = Settings.from_file(str(path))

    assert settings.keys == ["alpha", "beta"]


def test_load_config_missing_file(tmp_path):
    assert Settings.load_config(str(tmp_path / "missing.yaml")) == {}


def test_load_config_from_env(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("upstream:\n  key_param: apikey\n", encoding="utf-8")
    monkeypatch.setenv(Constants.CONFIG_ENV_VAR, str(path))

    assert Settings.from_file().key_param == "apikey"


def test_create_app_seeds_configured_keys():
    app = create_app(Settings({"pool": {"keys": ["alpha", "beta", "alpha"]}}))

    assert [r.key for r in app.state.pool.registry.list()] == ["alpha", "beta"]
    assert app.state.pool.error_log.capacity == 1000


def test_mask_key():
    assert mask_key("") == ""
    assert mask_key("short") == "****"
    assert mask_key("AIzaSyExampleKey1234") == "AIza****1234"


def test_import_does_not_build_an_app():
    assert not hasattr(main_module, "app")
    assert not hasattr(main_module, "settings")


def test_build_app_reads_config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("pool:\n  keys:\n    - alpha\n  error_log_capacity: 5\n", encoding="utf-8")
    monkeypatch.setenv(Constants.CONFIG_ENV_VAR, str(path))

    app = build_app()

    assert [r.key for r in app.state.pool.registry.list()] == ["alpha"]
    assert app.state.pool.error_log.capacity == 5
