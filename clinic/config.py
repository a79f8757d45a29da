from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "clinic.sqlite"


def database_url() -> str:
    return os.getenv("CLINIC_DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}")


def token_secret() -> str | None:
    # read per call: an empty secret must close the gate, not stop the process
    return os.getenv("TOKEN_SECRET") or None


def token_expire_days() -> int:
    return int(os.getenv("TOKEN_EXPIRE_DAYS", "7"))


def dev_secret() -> str | None:
    return os.getenv("DEV_SECRET") or None


def image_fetch_timeout() -> float:
    return float(os.getenv("IMAGE_FETCH_TIMEOUT", "10"))


def image_fetch_workers() -> int | None:
    # unset: one worker per fetch
    value = os.getenv("IMAGE_FETCH_WORKERS")
    return int(value) if value else None


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
