# config.py

import logging
import logging.handlers
import os
import sys

from dotenv import load_dotenv

# .env лежит в корне проекта, рядом с config.py
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logging.warning(f"Некорректное значение {name}={value!r}, используется {default}")
        return default


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logging.warning(f"Некорректное значение {name}={value!r}, используется {default}")
        return default


# === Telegram ===
BOT_TOKEN = os.getenv("BOT_TOKEN", "")
OWNER_ID = _get_int("OWNER_ID", 0)
TIMEZONE = os.getenv("TIMEZONE", "America/Sao_Paulo")

# === Локальное хранилище ===
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_FILE = os.getenv("DATA_FILE", os.path.join(BASE_DIR, "data", "ads.json"))
MAX_ADS_PER_GROUP = _get_int("MAX_ADS_PER_GROUP", 10)

# === Удалённый API ===
REMOTE_API_ENABLED = _get_bool("REMOTE_API_ENABLED", False)
REMOTE_API_BASE_URL = os.getenv("REMOTE_API_BASE_URL", "http://localhost:8000/api")
REMOTE_API_TOKEN = os.getenv("REMOTE_API_TOKEN", "")
REMOTE_API_TIMEOUT = _get_float("REMOTE_API_TIMEOUT", 10.0)
REMOTE_API_RETRY_ATTEMPTS = _get_int("REMOTE_API_RETRY_ATTEMPTS", 3)
REMOTE_API_RETRY_DELAY = _get_float("REMOTE_API_RETRY_DELAY", 1.0)

# === Синхронизация ===
SYNC_INTERVAL_SECONDS = _get_int("SYNC_INTERVAL_SECONDS", 300)
SYNC_ADOPT_NEW = _get_bool("SYNC_ADOPT_NEW", False)

# === Логирование и веб-API ===
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")
WEB_API_PORT = _get_int("WEB_API_PORT", 0)
WEB_API_SECRET = os.getenv("WEB_API_SECRET", "")

if not BOT_TOKEN:
    logging.warning("BOT_TOKEN не задан.")
if REMOTE_API_ENABLED and not REMOTE_API_TOKEN:
    logging.warning("REMOTE_API_ENABLED включён, но REMOTE_API_TOKEN не задан.")


def configure_logging(level: str = LOG_LEVEL, log_file: str = LOG_FILE):
    """Настраивает логирование: консоль и, если задан LOG_FILE, файл с ротацией."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
            )
        )

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
        force=True,
    )

    # Сторонние библиотеки слишком болтливы на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
