"""Print the effective pipeline and logging configuration as JSON.

Secrets are replaced by ``"***"``; breaker settings are expanded.
"""

import json
import logging
import os
import sys
from dataclasses import asdict

from dotenv import load_dotenv

from autoreply.config import Settings

_SECRET_FIELDS = {
    "gateway_api_key",
    "webhook_secret",
    "meta_verify_token",
    "database_url",
    "redis_url",
}


def get_log_config():
    log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    return {
        "log_dir": os.path.abspath(os.getenv("LOG_DIR", "logs")),
        "log_level": logging.getLevelName(log_level),
        "log_json": os.getenv("LOG_JSON", "false").lower() == "true",
        "retention_days": int(os.getenv("LOG_RETENTION_DAYS", "7")),
        "rotate_utc": os.getenv("LOG_ROTATE_UTC", "false").lower() == "true",
    }


def get_pipeline_config(settings=None):
    settings = settings or Settings.from_env()
    data = asdict(settings)
    for name in _SECRET_FIELDS:
        if data.get(name):
            data[name] = "***"
    return data


def main():
    load_dotenv()
    config = {"logging": get_log_config(), "pipeline": get_pipeline_config()}
    sys.stdout.write(json.dumps(config, indent=2, default=list) + "\n")


if __name__ == "__main__":
    main()
