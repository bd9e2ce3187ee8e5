import os
import toml
from typing import Any

from dotenv import load_dotenv

from .core.exceptions import ConfigurationError


class Config:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance.load_config()
        return cls._instance

    def load_config(self):
        # Load environment variables from .env file
        load_dotenv()

        settings_file = os.environ.get(
            "ENROLLMENT_CAPACITY_SETTINGS", "settings.toml"
        )
        try:
            with open(settings_file, "r") as f:
                self.config = toml.load(f)
        except FileNotFoundError:
            self.config = None
            raise ConfigurationError(
                f"Configuration file '{settings_file}' not found."
            )

        # Secrets stay out of version control via the .env file
        bot_token = os.environ.get("TELEGRAM_BOT_TOKEN")
        chat_id = os.environ.get("TELEGRAM_CHAT_ID")

        if bot_token or chat_id:
            if "telegram" not in self.config:
                self.config["telegram"] = {}

            if bot_token:
                self.config["telegram"]["bot_token"] = bot_token
            if chat_id:
                self.config["telegram"]["chat_id"] = chat_id

    def get_config(self) -> dict[str, Any]:
        return self.config


def get_config() -> dict[str, Any]:
    try:
        return Config().get_config()
    except ConfigurationError:
        # Allow a later call to retry once the settings file exists
        Config._instance = None
        raise


def get_setting(section: str, key: str, default: Any = None) -> Any:
    """
    Read a single setting, falling back to ``default``.

    Missing sections, missing keys and a missing settings file all resolve
    to the default so services stay usable without a settings.toml.
    """
    try:
        config = get_config()
    except ConfigurationError:
        return default
    return config.get(section, {}).get(key, default)
