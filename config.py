import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        backup_dir: Path,
        backup_keep: int,
        ai_url: str,
        ai_api_key: str,
        ai_model: str,
        ai_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.backup_dir = backup_dir
        self.backup_keep = backup_keep
        self.ai_url = ai_url
        self.ai_api_key = ai_api_key
        self.ai_model = ai_model
        self.ai_timeout_secs = ai_timeout_secs

    @property
    def ai_enabled(self) -> bool:
        return bool(self.ai_url)


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Stockholm")
    backup_dir = Path(os.getenv("BUDGET_BACKUP_DIR", str(data_dir / "backups")))
    backup_keep = int(os.getenv("BUDGET_BACKUP_KEEP", "14"))
    ai_url = os.getenv("BUDGET_AI_URL", "")
    ai_api_key = os.getenv("BUDGET_AI_API_KEY", "")
    ai_model = os.getenv("BUDGET_AI_MODEL", "gpt-4o-mini")
    ai_timeout_secs = float(os.getenv("BUDGET_AI_TIMEOUT_SECS", "20"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        backup_dir=backup_dir,
        backup_keep=backup_keep,
        ai_url=ai_url,
        ai_api_key=ai_api_key,
        ai_model=ai_model,
        ai_timeout_secs=ai_timeout_secs,
    )
