import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        tenant_prefix: str,
        tenant_template: str,
        timezone: str,
        run_hour: int,
        run_minute: int,
        run_on_startup: bool,
        max_workers: int,
        tenant_timeout_secs: float,
        sqlite_busy_timeout_secs: float,
        token_secret: str,
        token_max_age_hours: int,
    ) -> None:
        self.data_dir = data_dir
        self.tenant_prefix = tenant_prefix
        self.tenant_template = tenant_template
        self.timezone = timezone
        self.run_hour = run_hour
        self.run_minute = run_minute
        self.run_on_startup = run_on_startup
        self.max_workers = max_workers
        self.tenant_timeout_secs = tenant_timeout_secs
        self.sqlite_busy_timeout_secs = sqlite_busy_timeout_secs
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours

    def tenant_database_url(self, tenant_id: str) -> str:
        path = self.data_dir / f"{self.tenant_prefix}{tenant_id}.db"
        return f"sqlite:///{path}"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "5d0c6f2b8e0a4c31a7f3e9b1d2c4a6f8e0b2d4f6a8c0e2b4d6f8a0c2e4b6d8f0",
    )
    return Settings(
        data_dir=data_dir,
        tenant_prefix=os.getenv("EXPENSES_TENANT_PREFIX", "shop_"),
        tenant_template=os.getenv("EXPENSES_TENANT_TEMPLATE", "shop_template"),
        timezone=os.getenv("EXPENSES_TIMEZONE", "UTC"),
        run_hour=int(os.getenv("EXPENSES_RUN_HOUR", "2")),
        run_minute=int(os.getenv("EXPENSES_RUN_MINUTE", "0")),
        run_on_startup=_env_flag("EXPENSES_RUN_ON_STARTUP"),
        max_workers=int(os.getenv("EXPENSES_MAX_WORKERS", "4")),
        tenant_timeout_secs=float(os.getenv("EXPENSES_TENANT_TIMEOUT_SECS", "300")),
        sqlite_busy_timeout_secs=float(
            os.getenv("EXPENSES_SQLITE_BUSY_TIMEOUT_SECS", "30")
        ),
        token_secret=token_secret,
        token_max_age_hours=int(os.getenv("EXPENSES_TOKEN_MAX_AGE_HOURS", "12")),
    )
