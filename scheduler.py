import logging
import threading
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backup import BlobStore, LocalBlobStore
from config import get_settings
from database import session_scope
from events import (
    BACKUP_RESTORED,
    DATA_CHANGED,
    TRANSACTIONS_COMMITTED,
    Event,
    EventBus,
)
from services import BackupService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

WATCHED_EVENTS = (DATA_CHANGED, TRANSACTIONS_COMMITTED, BACKUP_RESTORED)


class SchedulerManager:
    def __init__(self, bus: EventBus, store: Optional[BlobStore] = None) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.store = store or LocalBlobStore(settings.backup_dir)
        self.keep = settings.backup_keep
        self.bus = bus
        self._dirty = False
        self._lock = threading.Lock()

    def mark_dirty(self, event: Event) -> None:
        with self._lock:
            self._dirty = True

    def _take_dirty(self) -> bool:
        with self._lock:
            dirty, self._dirty = self._dirty, False
        return dirty

    def run_backup(self, source: str = "manual") -> bool:
        """Write a snapshot when data changed since the last one, then prune."""
        dirty = self._take_dirty()
        if not dirty and self.store.list():
            logger.info(f"backup_skipped: source={source} reason=unchanged")
            return False
        try:
            with session_scope() as session:
                service = BackupService(session, self.store)
                info = service.backup_to_store()
                removed = service.prune(self.keep)
        except Exception:
            with self._lock:
                self._dirty = True
            raise
        logger.info(
            f"backup_run: source={source} name={info.name} pruned={len(removed)}"
        )
        return True

    def _run_job(self, source: str) -> None:
        try:
            self.run_backup(source)
        except Exception:
            logger.exception(f"backup_failed: source={source}")

    def start(self) -> None:
        for name in WATCHED_EVENTS:
            self.bus.subscribe(name, self.mark_dirty)

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="backup_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="backup_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        for name in WATCHED_EVENTS:
            self.bus.unsubscribe(name, self.mark_dirty)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
