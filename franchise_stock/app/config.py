import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.db_url = os.getenv("DATABASE_URL", "postgresql://localhost/franchise_stock")
        # Pool sizing defaults are conservative for local/dev.
        self.db_pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max_size = _env_int("DB_POOL_MAX_SIZE", 10)
        # Comma-separated list of allowed CORS origins for the admin/franchise web app.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Admin refills must carry batches expiring strictly after this many days.
        self.refill_min_shelf_life_days = _env_int("REFILL_MIN_SHELF_LIFE_DAYS", 90)
        # Recalls are limited to batches expiring within this many days.
        self.recall_window_days = _env_int("RECALL_WINDOW_DAYS", 45)
        self.rebuild_batch_size = _env_int("REBUILD_BATCH_SIZE", 1000)

    @property
    def is_dev(self) -> bool:
        return self.env in {"local", "dev"}


settings = Settings()
