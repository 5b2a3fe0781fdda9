from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import scheduler
from backup import LocalBlobStore, backup_name
from database import Base
from events import DATA_CHANGED, EventBus
from scheduler import SchedulerManager


def test_backup_skipped_when_nothing_changed(tmp_path) -> None:
    store = LocalBlobStore(tmp_path)
    store.create(backup_name(datetime(2025, 3, 1, 3, 15)), "{}")
    manager = SchedulerManager(EventBus(), store)

    assert manager.run_backup("test") is False
    assert len(store.list()) == 1


def test_data_change_triggers_backup(tmp_path, monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    @contextmanager
    def in_memory_scope():
        with Session(engine) as session:
            yield session
            session.commit()

    monkeypatch.setattr(scheduler, "session_scope", in_memory_scope)
    store = LocalBlobStore(tmp_path)
    store.create(backup_name(datetime(2025, 3, 1, 3, 15)), "{}")
    bus = EventBus()
    manager = SchedulerManager(bus, store)
    manager.start()
    try:
        bus.publish(DATA_CHANGED, entity="bucket")
        assert manager.run_backup("test") is True
        assert len(store.list()) == 2
        assert manager.run_backup("test") is False
    finally:
        manager.stop()
