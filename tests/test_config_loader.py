# tests/test_config_loader.py
from common.config_loader import build_settings, cfg_get, load_config, mask_key


def test_cfg_get_walks_dotted_paths():
    cfg = {"openai": {"voice": "sage"}, "flat": 1}
    assert cfg_get(cfg, "openai.voice") == "sage"
    assert cfg_get(cfg, "openai.missing", "x") == "x"
    assert cfg_get(cfg, "flat.deeper", None) is None


def test_build_settings_merges_yaml_and_env(monkeypatch):
    monkeypatch.setenv("SERVICES_BASE_URL", "https://override.example")
    monkeypatch.setenv("SERVICES_API_KEY", "svc-key")
    monkeypatch.delenv("HISTORY_API_KEY", raising=False)
    s = build_settings({
        "openai": {"voice": "sage"},
        "turn_detection": {"threshold": 0.5},
        "services": {"base_url": "https://from-yaml.example"},
        "conversation": {"auth_question_threshold": 5, "default_time_slots": ["10:00 AM"]},
        "history": {"writer": "DB"},
    })
    assert s.voice == "sage"
    assert s.turn_detection["threshold"] == 0.5
    assert s.turn_detection["type"] == "server_vad"
    assert s.services_base_url == "https://override.example"
    assert s.auth_question_threshold == 5
    assert s.default_time_slots == ["10:00 AM"]
    assert s.history_writer == "db"
    assert s.history_api_key == "svc-key"


def test_defaults_without_config(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("SERVICES_BASE_URL", raising=False)
    assert load_config() == {}
    s = build_settings()
    assert s.auth_question_threshold == 3
    assert s.settle_delay_s == 0.5


def test_mask_key_never_echoes_the_secret():
    assert mask_key(None) == "<none>"
    masked = mask_key("sk-very-secret")
    assert masked.startswith("sha256:") and "secret" not in masked
