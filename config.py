import os
from functools import lru_cache
from pathlib import Path


CATEGORY_DELETE_POLICIES = ("orphan", "block", "cascade")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        seed_defaults: bool,
        category_delete_policy: str,
        api_base_url: str,
        api_timeout_secs: float,
        cache_path: Path,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.seed_defaults = seed_defaults
        self.category_delete_policy = category_delete_policy
        self.api_base_url = api_base_url
        self.api_timeout_secs = api_timeout_secs
        self.cache_path = cache_path


def _data_dir() -> Path:
    return Path(os.getenv("POCKET_DATA_DIR", "./data")).resolve()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("POCKET_DATABASE_URL", "sqlite://")
    timezone = os.getenv("POCKET_TIMEZONE", "Asia/Karachi")
    seed_defaults = _env_flag("POCKET_SEED_DEFAULTS", "1")
    policy = os.getenv("POCKET_CATEGORY_DELETE_POLICY", "orphan").strip().lower()
    if policy not in CATEGORY_DELETE_POLICIES:
        raise ValueError(f"Unsupported category delete policy: {policy}")
    api_base_url = os.getenv("POCKET_API_BASE_URL", "http://127.0.0.1:8000")
    api_timeout_secs = float(os.getenv("POCKET_API_TIMEOUT_SECS", "5"))
    cache_path_env = os.getenv("POCKET_CACHE_PATH")
    cache_path = (
        Path(cache_path_env)
        if cache_path_env
        else _data_dir() / "client_cache.json"
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        seed_defaults=seed_defaults,
        category_delete_policy=policy,
        api_base_url=api_base_url.rstrip("/"),
        api_timeout_secs=api_timeout_secs,
        cache_path=cache_path,
    )
