import os
import logging
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class Settings:
    database_url: str = os.getenv("LIBRESERVE_DB", "sqlite:///./libreserve.db")
    db_timeout: int = _env_int("LIBRESERVE_DB_TIMEOUT", 30)
    log_level: str = os.getenv("LIBRESERVE_LOG", "INFO")

    # reservation rules
    pickup_window_hours: int = _env_int("LIBRESERVE_PICKUP_HOURS", 48)
    loan_period_days: int = _env_int("LIBRESERVE_LOAN_DAYS", 14)
    max_active_reservations: int = _env_int("LIBRESERVE_MAX_ACTIVE", 5)
    max_extension_days: int = _env_int("LIBRESERVE_MAX_EXTENSION_DAYS", 30)
    notes_max_length: int = _env_int("LIBRESERVE_NOTES_MAX", 500)

    # seconds between expiry sweeps in the web process, 0 disables
    sweep_interval: int = _env_int("LIBRESERVE_SWEEP_INTERVAL", 300)


settings = Settings()


def configure_logging(level: str = None) -> None:
    logging.basicConfig(level=level or settings.log_level,
                        format="%(asctime)s %(levelname)s %(name)s - %(message)s")
