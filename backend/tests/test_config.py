import pytest
from pydantic import ValidationError

from voicechat.config import Settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        settings = Settings(_env_file=None)

        assert settings.log_level == "INFO"
        assert settings.is_development
        assert not settings.is_production
        assert settings.reasoning_url.endswith("/api/chat")
        assert settings.service_error_reply

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("REASONING_URL", "https://brain.example.com/ask")
        monkeypatch.setenv("ENVIRONMENT", "Production")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.reasoning_url == "https://brain.example.com/ask"
        assert settings.is_production
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize("field,value", [
        ("log_level", "LOUD"),
        ("environment", "qa"),
        ("port", 80),
        ("reasoning_timeout_s", 0),
    ])
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})
