from propertyhub.configs import (
    _resolve_placeholders,
    apply_env_overrides,
    configs,
    read_env,
)


def test_packaged_defaults():
    assert configs["store"]["collections"]["flats"]
    assert "clear_on_delete" in configs["selection"]


def test_env_values_override_yaml():
    config = {"store": {"backend": "mongo"}, "app": {"log_level": "INFO"}}
    environment = {
        "STORE_BACKEND": "memory",
        "LOG_LEVEL": "DEBUG",
        "CLEAR_SELECTION_ON_DELETE": "True",
    }
    result = apply_env_overrides(config, environment)
    assert result["store"]["backend"] == "memory"
    assert result["app"]["log_level"] == "DEBUG"
    assert result["selection"]["clear_on_delete"] is True


def test_missing_env_keeps_yaml():
    config = {"store": {"backend": "mongo"}}
    assert apply_env_overrides(config, {}) == {"store": {"backend": "mongo"}}


def test_placeholders_resolve_from_top_level():
    data = {"db": "locations", "uri": "mongodb://localhost/${db}"}
    assert _resolve_placeholders(data, data)["uri"] == "mongodb://localhost/locations"


def test_read_env_prefers_file(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("MONGO_DB=from_file\n")
    monkeypatch.setenv("MONGO_DB", "from_process")
    assert read_env(".env", [None, str(tmp_path)])["MONGO_DB"] == "from_file"


def test_read_env_falls_back_to_process(tmp_path, monkeypatch):
    monkeypatch.setenv("MONGO_DB", "from_process")
    monkeypatch.setenv("UNRELATED_SETTING", "x")
    environment = read_env(".env", [str(tmp_path)])
    assert environment["MONGO_DB"] == "from_process"
    assert "UNRELATED_SETTING" not in environment
