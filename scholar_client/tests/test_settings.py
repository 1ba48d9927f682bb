import pydantic
import pytest

from scholar_client.config.settings import Settings


def test_yaml_file_is_loaded(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("service_profile: assistant\nhttp_timeout: 5\n", encoding="utf-8")
    monkeypatch.setenv("SCHOLAR_CONFIG_FILE", str(cfg))
    monkeypatch.delenv("SERVICE_PROFILE", raising=False)

    s = Settings()

    assert s.service_profile == "assistant"
    assert s.http_timeout == 5.0
    assert s.service_base_url == "https://ai-server.aifiqh.com"


def test_environment_wins_over_yaml(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("service_profile: assistant\n", encoding="utf-8")
    monkeypatch.setenv("SCHOLAR_CONFIG_FILE", str(cfg))
    monkeypatch.setenv("SERVICE_PROFILE", "scholar")

    assert Settings().service_profile == "scholar"


def test_framing_is_normalised():
    assert Settings(framing="LINE").framing == "line"
    assert Settings(framing=None).framing is None
    with pytest.raises(pydantic.ValidationError):
        Settings(framing="sse")


def test_timeout_lower_bound():
    with pytest.raises(pydantic.ValidationError):
        Settings(http_timeout=0.5)
