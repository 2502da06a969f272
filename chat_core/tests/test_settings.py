import pytest
from pydantic import ValidationError

from chat_core.config.settings import Settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(tmp_path / "none.yaml"))
    for name in ("OPENAI_API_KEY", "HTTP_PROXY", "SYSTEM_MESSAGE", "API_BASE_URL", "DEFAULT_CHAT_MODEL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = Settings(_env_file=None)
    assert cfg.openai_api_key is None
    assert cfg.http_proxy is None
    assert cfg.default_chat_model == "gpt-3.5-turbo"
    assert cfg.stream_channel_size == 100
    assert cfg.drop_blank_deltas is True
    assert cfg.sessions_file == "chats.json"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("HTTP_PROXY", "http://127.0.0.1:7890")
    monkeypatch.setenv("SYSTEM_MESSAGE", "be terse")
    cfg = Settings(_env_file=None)
    assert cfg.openai_api_key == "sk-env"
    assert cfg.http_proxy == "http://127.0.0.1:7890"
    assert cfg.system_message == "be terse"


def test_blank_values_are_unset(monkeypatch):
    monkeypatch.setenv("SYSTEM_MESSAGE", "   ")
    monkeypatch.setenv("HTTP_PROXY", "")
    cfg = Settings(_env_file=None)
    assert cfg.system_message is None
    assert cfg.http_proxy is None


def test_yaml_config_file(monkeypatch, tmp_path):
    path = tmp_path / "chat.yaml"
    path.write_text("default_chat_model: gpt-4\napi_base_url: https://example.test/v1/\n", encoding="utf-8")
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(path))
    cfg = Settings(_env_file=None)
    assert cfg.default_chat_model == "gpt-4"
    assert cfg.api_base_url == "https://example.test/v1"


def test_environment_beats_yaml(monkeypatch, tmp_path):
    path = tmp_path / "chat.yaml"
    path.write_text("default_chat_model: gpt-4\n", encoding="utf-8")
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(path))
    monkeypatch.setenv("DEFAULT_CHAT_MODEL", "gpt-3.5-turbo-16k")
    assert Settings(_env_file=None).default_chat_model == "gpt-3.5-turbo-16k"


def test_proxy_without_scheme_is_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, http_proxy="127.0.0.1:7890")
