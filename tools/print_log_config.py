"""Print the effective logging and relay configuration as JSON."""

import dataclasses
import json
import logging
import os
import sys

from supportrelay.app_logging import load_log_config
from supportrelay.config import get_settings


def get_log_config():
    config = dataclasses.asdict(load_log_config())
    config["log_dir"] = os.path.abspath(config["log_dir"])
    config["level"] = logging.getLevelName(config["level"])
    return config


def get_relay_config():
    settings = get_settings()
    return {
        "database": "postgres" if settings.database_url else "memory",
        "telegram_mode": settings.telegram_mode,
        "telegram_webhook_url": settings.telegram_webhook_url,
        "telegram_webhook_secret_set": bool(settings.telegram_webhook_secret),
        "allowed_origins": list(settings.allowed_origins),
        "chat_rate_limit": settings.chat_rate_limit,
    }


def main():
    config = {"logging": get_log_config(), "relay": get_relay_config()}
    sys.stdout.write(json.dumps(config, indent=2) + "\n")


if __name__ == "__main__":
    main()
