import os
from dataclasses import dataclass

from dotenv import load_dotenv

STORAGE_BACKENDS = ("sqlite", "memory")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Config:
    bot_token: str
    storage: str = "sqlite"
    db_path: str = "ledger.db"
    log_level: str = "INFO"


def load_config() -> Config:
    load_dotenv()

    token = os.getenv("BOT_TOKEN", "").strip()
    if not token:
        raise ConfigError("BOT_TOKEN environment variable is required")

    storage = os.getenv("LEDGER_STORAGE", "sqlite").strip().lower()
    if storage not in STORAGE_BACKENDS:
        raise ConfigError(f"LEDGER_STORAGE must be one of {', '.join(STORAGE_BACKENDS)}, got {storage!r}")

    return Config(
        bot_token=token,
        storage=storage,
        db_path=os.getenv("DB_PATH") or "ledger.db",
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
