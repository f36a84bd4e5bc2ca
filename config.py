import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        log_level: str,
        debt_status_includes_interest: bool,
        import_max_rows: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.log_level = log_level
        self.debt_status_includes_interest = debt_status_includes_interest
        self.import_max_rows = import_max_rows


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    csrf_secret = os.getenv(
        "FINANCE_CSRF_SECRET",
        "4c1e0a9d7f3b26e85d0c9a1f6b7e2d34a8c5f90e1b3d7a6c2e4f8b0d9a1c3e57",
    )
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    debt_status_includes_interest = _env_flag(
        "FINANCE_DEBT_STATUS_INCLUDES_INTEREST", "1"
    )
    import_max_rows = int(os.getenv("FINANCE_IMPORT_MAX_ROWS", "5000"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        log_level=log_level,
        debt_status_includes_interest=debt_status_includes_interest,
        import_max_rows=import_max_rows,
    )
