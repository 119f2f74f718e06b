"""
Root test conftest — isolate settings from the developer's environment so
config tests are not affected by real keys, a RECOCHAT_CONFIG override or a
local .env file.
"""
import pytest

_ISOLATED_ENV_VARS = [
    "AGENT_API_KEY",
    "RECOCHAT_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove RecoChat env vars for every test so Settings() behaves as if
    nothing is configured unless the test explicitly provides it.
    Also disables .env file loading so local developer .env files don't
    leak real credentials into tests."""
    for var in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import recochat.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)
