"""Application configuration — loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH", str(_PROJECT_ROOT / "data" / "travel_ledger.db"))
    )
    EXPORT_DIRECTORY: str = _runtime.get(
        "export_directory",
        os.getenv("EXPORT_DIRECTORY", str(_PROJECT_ROOT / "data" / "exports")),
    )

    # Remote API (settings.json overrides .env)
    API_BASE_URL: str = _runtime.get(
        "api_base_url",
        os.getenv("API_BASE_URL", "http://localhost:5000/api"),
    )
    API_TIMEOUT: float = float(_runtime.get(
        "api_timeout",
        os.getenv("API_TIMEOUT", "15"),
    ))
    SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "connect.sid")
    SESSION_COOKIE: str = os.getenv("SESSION_COOKIE", "")

    # Identity chosen on this device (empty until the user identifies)
    IDENTITY_VALUE: str = _runtime.get("identity_value", "")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def update_api_settings(cls, base_url: str, timeout: float):
        """Update remote API settings at runtime and persist to disk."""
        cls.API_BASE_URL = base_url
        cls.API_TIMEOUT = timeout

        settings = _load_settings()
        settings["api_base_url"] = base_url
        settings["api_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_identity(cls, identity_value: str):
        """Remember the identity string chosen on this device."""
        cls.IDENTITY_VALUE = identity_value
        settings = _load_settings()
        settings["identity_value"] = identity_value
        _save_settings(settings)

    @classmethod
    def update_export_directory(cls, directory: str):
        """Update the default export directory and persist."""
        cls.EXPORT_DIRECTORY = directory
        settings = _load_settings()
        settings["export_directory"] = directory
        _save_settings(settings)

    @classmethod
    def get_cookies(cls) -> dict[str, str]:
        """Session cookies sent with every remote request."""
        if cls.SESSION_COOKIE:
            return {cls.SESSION_COOKIE_NAME: cls.SESSION_COOKIE}
        return {}
