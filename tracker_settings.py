from __future__ import annotations

import logging
import os
from typing import Set

logger = logging.getLogger(__name__)


def load_dotenv(path: str = ".env") -> None:
    if not os.path.exists(path):
        return

    try:
        with open(path, "r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip("'").strip('"')
                if key:
                    os.environ.setdefault(key, value)
    except OSError:
        logger.exception("Failed to read %s", path)


def required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"{name} is not configured")
    return value


def env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default) == "1"


def configure_logging() -> None:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cors_allowed_origins() -> Set[str]:
    return {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5001,http://127.0.0.1:5001",
        ).split(",")
        if origin.strip()
    }


def api_base_url() -> str:
    return os.environ.get("TRACKER_API_URL", "http://localhost:8888/api").rstrip("/")


def api_timeout_seconds() -> float:
    return float(os.environ.get("TRACKER_API_TIMEOUT_SECONDS", "5"))


load_dotenv()
