"""
Tests for tools/settings.py — environment configuration and logging setup.
"""

import logging

import pytest

from models.session import MAX_PLAYERS
from tools.settings import LOG_FORMAT, Settings, configure_logging, load_settings

ENV_VARS = (
    "FORGE_DATABASE_URL",
    "FORGE_AUTH_TOKEN",
    "FORGE_MAX_PLAYERS",
    "FORGE_JOIN_TIMEOUT",
    "FORGE_MAX_STATE_BYTES",
    "FORGE_SESSIONS_FILE",
    "FORGE_MODEL_ID",
    "FORGE_LOG_LEVEL",
    "FORGE_LOG_FILE",
    "GEMINI_API_KEY",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # A path with no file behind it, so a stray .env never leaks in.
    return str(tmp_path / "missing.env")


class TestLoadSettings:

    def test_defaults(self, clean_env):
        settings = load_settings(clean_env)
        assert settings == Settings()
        assert settings.max_players == MAX_PLAYERS
        assert settings.join_timeout == 20.0

    def test_values_from_environment(self, clean_env, monkeypatch):
        monkeypatch.setenv("FORGE_DATABASE_URL", "https://forge.example.firebaseio.com")
        monkeypatch.setenv("FORGE_MAX_PLAYERS", "3")
        monkeypatch.setenv("FORGE_JOIN_TIMEOUT", "2.5")
        monkeypatch.setenv("FORGE_LOG_LEVEL", "debug")

        settings = load_settings(clean_env)

        assert settings.database_url == "https://forge.example.firebaseio.com"
        assert settings.max_players == 3
        assert settings.join_timeout == 2.5
        assert settings.log_level == "DEBUG"

    def test_bad_numbers_fall_back(self, clean_env, monkeypatch):
        monkeypatch.setenv("FORGE_MAX_PLAYERS", "lots")
        monkeypatch.setenv("FORGE_MAX_STATE_BYTES", "0")
        monkeypatch.setenv("FORGE_JOIN_TIMEOUT", "-1")

        settings = load_settings(clean_env)

        assert settings.max_players == MAX_PLAYERS
        assert settings.max_state_bytes == 4_000_000
        assert settings.join_timeout == 20.0

    def test_unknown_log_level_falls_back(self, clean_env, monkeypatch):
        monkeypatch.setenv("FORGE_LOG_LEVEL", "chatty")
        assert load_settings(clean_env).log_level == "INFO"

    def test_dotenv_file_is_read(self, clean_env, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("FORGE_AUTH_TOKEN=secret\nFORGE_MODEL_ID=gemini-test\n", encoding="utf-8")
        # load_dotenv writes to os.environ; let monkeypatch undo it.
        monkeypatch.setenv("FORGE_AUTH_TOKEN", "")
        monkeypatch.delenv("FORGE_AUTH_TOKEN")
        monkeypatch.setenv("FORGE_MODEL_ID", "")
        monkeypatch.delenv("FORGE_MODEL_ID")

        settings = load_settings(str(env_file))

        assert settings.auth_token == "secret"
        assert settings.model_id == "gemini-test"


class TestConfigureLogging:

    def test_file_handler_is_added(self, tmp_path):
        log_file = tmp_path / "logs" / "forge.log"
        configure_logging(Settings(log_level="DEBUG", log_file=str(log_file)))
        root = logging.getLogger()
        try:
            assert root.level == logging.DEBUG
            assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
            logging.getLogger("Test").info("hello")
            for handler in root.handlers:
                handler.flush()
            assert "[INFO] Test: hello" in log_file.read_text(encoding="utf-8")
            assert LOG_FORMAT.startswith("%(asctime)s")
        finally:
            for handler in list(root.handlers):
                if isinstance(handler, logging.FileHandler):
                    root.removeHandler(handler)
                    handler.close()
