"""Tests for EnvironConfig typed getters and the app config."""

import pytest

from caption_room.app_config import get_app_environ_config
from caption_room.shared.config import EnvironConfig, config


@pytest.fixture
def env(monkeypatch):
    """Reload the config singleton with patched environment variables."""

    def _set(**values: str) -> EnvironConfig:
        for key, value in values.items():
            monkeypatch.setenv(key, value)
        config.reload()
        return config

    yield _set
    monkeypatch.undo()
    config.reload()


class TestEnvironConfig:
    def test_singleton(self):
        assert EnvironConfig() is config

    def test_environment_overrides_env_files(self, env):
        cfg = env(ROOM_DEFAULT_CAPACITY="5")

        assert cfg.get_int("ROOM_DEFAULT_CAPACITY", 2) == 5

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("YES", True), ("no", False)])
    def test_get_bool(self, env, raw: str, expected: bool):
        assert env(CR_TEST_FLAG=raw).get_bool("CR_TEST_FLAG") is expected

    def test_get_bool_blank_uses_default(self, env):
        assert env(CR_TEST_FLAG="  ").get_bool("CR_TEST_FLAG", True) is True

    def test_get_int_invalid_uses_default(self, env):
        assert env(CR_TEST_INT="lots").get_int("CR_TEST_INT", 7) == 7

    def test_get_int_below_minimum_uses_default(self, env):
        assert env(CR_TEST_INT="0").get_int("CR_TEST_INT", 2, minimum=1) == 2

    def test_get_float(self, env):
        assert env(CR_TEST_FLOAT="2.5").get_float("CR_TEST_FLOAT", 1.0) == 2.5

    def test_get_list(self, env):
        cfg = env(CR_TEST_LIST="http://a.test, http://b.test,,")

        assert cfg.get_list("CR_TEST_LIST") == ["http://a.test", "http://b.test"]

    def test_missing_key(self):
        assert config.get("CR_TEST_MISSING", "fallback") == "fallback"
        with pytest.raises(KeyError):
            config["CR_TEST_MISSING"]


class TestAppEnvironConfig:
    def test_defaults(self):
        cfg = get_app_environ_config()

        assert cfg.DEMO_MODE is True
        assert cfg.ROOM_DEFAULT_CAPACITY == 2
        assert cfg.ROOM_MAX_CAPACITY >= cfg.ROOM_DEFAULT_CAPACITY
        assert cfg.AUDIO_TURN_TIMEOUT_SECONDS > 0
        assert cfg.TRANSCRIBER_MODEL == "whisper-1"
