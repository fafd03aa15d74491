import pathlib

import pydantic
import pytest

from mg_api.config import Settings, load_settings


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings({})
        assert settings == Settings()
        assert settings.server.port == 3000
        assert settings.cache.bundle_ttl == 300
        assert settings.websocket.auto_reconnect is True
        assert settings.version_file == pathlib.Path("./data/version.json")
        assert settings.atlases_file == pathlib.Path("./data/atlases.json")

    def test_overrides(self):
        settings = load_settings(
            {
                "MG_PORT": "8080",
                "MG_GAME_ORIGIN": "https://example.test",
                "MG_WS_AUTO_RECONNECT": "false",
                "MG_WS_ROOM_ID": "deadbeef",
                "MG_SPRITES_EXPORT_DIR": "/tmp/sprites",
                "MG_RESTART_ON_VERSION_MISMATCH": "0",
                "MG_DATA_DIR": "/var/mg",
                "MG_LOG_LEVEL": "DEBUG",
            }
        )
        assert settings.server.port == 8080
        assert settings.game.origin == "https://example.test"
        assert settings.websocket.auto_reconnect is False
        assert settings.websocket.room_id == "deadbeef"
        assert settings.sprites.export_dir == pathlib.Path("/tmp/sprites")
        assert settings.sprites.restart_on_version_mismatch is False
        assert settings.version_file == pathlib.Path("/var/mg/version.json")
        assert settings.log_level == "DEBUG"

    def test_empty_values_fall_back(self):
        assert load_settings({"MG_PORT": ""}).server.port == 3000

    def test_invalid_value(self):
        with pytest.raises(pydantic.ValidationError):
            load_settings({"MG_PORT": "not-a-port"})
