from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, Union

from pydantic import ValidationError

from schemas import Snapshot

BACKUP_PREFIX = "budget-backup-"
_BLOB_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+\.json$")


class BackupValidationError(ValueError):
    pass


@dataclass(frozen=True)
class BackupResult:
    ok: bool
    snapshot: Optional[Snapshot] = None
    error: Optional[str] = None


def validate_snapshot(payload: Union[str, bytes, dict]) -> BackupResult:
    """
    Parse and validate a backup document without touching any stored data.
    Missing or null list fields become empty lists and missing settings become
    the defaults (payday 25).
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            return BackupResult(ok=False, error=f"Backup is not valid JSON: {exc}")
    if not isinstance(payload, dict):
        return BackupResult(ok=False, error="Backup must be a JSON object")

    data = {key: value for key, value in payload.items() if value is not None}
    try:
        snapshot = Snapshot.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        return BackupResult(
            ok=False,
            error=f"Backup failed validation at {location}: {first['msg']}",
        )
    problem = _reference_problem(snapshot)
    if problem:
        return BackupResult(ok=False, error=problem)
    return BackupResult(ok=True, snapshot=snapshot)


def _duplicate_problem(snapshot: Snapshot) -> Optional[str]:
    sections = {
        "users": [u.id for u in snapshot.users],
        "accounts": [a.id for a in snapshot.accounts],
        "buckets": [b.id for b in snapshot.buckets],
        "transactions": [t.id for t in snapshot.transactions],
        "importRules": [r.id for r in snapshot.import_rules],
        "mainCategories": [c.id for c in snapshot.main_categories],
        "subCategories": [s.id for s in snapshot.sub_categories],
        "budgetGroups": [g.id for g in snapshot.budget_groups],
        "budgetTemplates": [t.id for t in snapshot.budget_templates],
        "monthConfigs": [c.month_key for c in snapshot.month_configs],
    }
    for section, ids in sections.items():
        seen: set[str] = set()
        for item_id in ids:
            if item_id in seen:
                return f"Backup has duplicate id {item_id} in {section}"
            seen.add(item_id)
    return None


def _reference_problem(snapshot: Snapshot) -> Optional[str]:
    duplicate = _duplicate_problem(snapshot)
    if duplicate:
        return duplicate
    account_ids = {a.id for a in snapshot.accounts}
    for bucket in snapshot.buckets:
        if bucket.account_id and bucket.account_id not in account_ids:
            return f"Bucket {bucket.id} refers to unknown account {bucket.account_id}"
    main_ids = {c.id for c in snapshot.main_categories}
    for sub in snapshot.sub_categories:
        if sub.main_category_id not in main_ids:
            return (
                f"Sub category {sub.id} refers to unknown main category "
                f"{sub.main_category_id}"
            )
    defaults = [t.id for t in snapshot.budget_templates if t.is_default]
    if len(defaults) > 1:
        return "Backup has more than one default template"
    return None


def dump_snapshot(snapshot: Snapshot) -> str:
    return snapshot.model_dump_json(by_alias=True, indent=2)


def backup_name(now: datetime) -> str:
    return f"{BACKUP_PREFIX}{now:%Y%m%d-%H%M%S}.json"


@dataclass(frozen=True)
class BlobInfo:
    name: str
    size: int
    modified_at: datetime


class BlobStore(Protocol):
    def list(self) -> list[BlobInfo]: ...

    def create(self, name: str, content: str) -> BlobInfo: ...

    def read(self, name: str) -> str: ...

    def delete(self, name: str) -> None: ...


class LocalBlobStore:
    """JSON blobs as files in one directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        if not _BLOB_NAME_RE.match(name):
            raise ValueError(f"Invalid backup name: {name}")
        return self.root / name

    def _info(self, path: Path) -> BlobInfo:
        stat = path.stat()
        return BlobInfo(
            name=path.name,
            size=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime),
        )

    def list(self) -> list[BlobInfo]:
        paths = sorted(self.root.glob("*.json"), key=lambda p: p.name, reverse=True)
        return [self._info(p) for p in paths]

    def create(self, name: str, content: str) -> BlobInfo:
        path = self._path(name)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
        return self._info(path)

    def read(self, name: str) -> str:
        path = self._path(name)
        if not path.exists():
            raise ValueError("Backup not found")
        return path.read_text(encoding="utf-8")

    def delete(self, name: str) -> None:
        path = self._path(name)
        if not path.exists():
            raise ValueError("Backup not found")
        path.unlink()


def prune_backups(store: BlobStore, keep: int) -> list[str]:
    """Delete automatic backups beyond the newest ``keep``."""
    names = sorted(
        (b.name for b in store.list() if b.name.startswith(BACKUP_PREFIX)),
        reverse=True,
    )
    removed = names[max(keep, 0) :]
    for name in removed:
        store.delete(name)
    return removed
