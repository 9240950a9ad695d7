import json

from freeflow import config
from freeflow.models import Config


def test_load_default_config_when_missing(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)
    monkeypatch.delenv("FREEFLOW_TRANSCRIPTION_API_KEY", raising=False)

    cfg = config.load_config()
    assert isinstance(cfg, Config)
    assert cfg.poll_interval == 1.0
    assert cfg.transcription_api_key is None


def test_save_and_load_config(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)

    cfg = Config(custom_vocabulary="Aanya, Deep Thought", max_history=10)
    config.save_config(cfg)

    loaded = config.load_config()
    assert loaded.custom_vocabulary == "Aanya, Deep Thought"
    assert loaded.max_history == 10
    assert "transcription_api_key" not in json.loads(cfg_path.read_text())


def test_update_config_validates_keys(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)

    config.update_config(rewrite_model="llama-small")
    loaded = config.load_config()
    assert loaded.rewrite_model == "llama-small"

    try:
        config.update_config(unknown="value")
    except config.ConfigError:
        pass
    else:
        raise AssertionError("Expected ConfigError for invalid key")


def test_unknown_keys_in_file_are_reported(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(json.dumps({"backend": "whisper"}))
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)

    try:
        config.load_config()
    except config.ConfigError as exc:
        assert "backend" in str(exc)
    else:
        raise AssertionError("Expected ConfigError for unknown key in file")


def test_environment_overrides_stored_keys(tmp_path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    monkeypatch.setattr(config, "CONFIG_PATH", cfg_path)
    config.save_config(Config(transcription_api_key="stored"))
    monkeypatch.setenv("FREEFLOW_TRANSCRIPTION_API_KEY", "from-env")

    assert config.load_config().transcription_api_key == "from-env"
