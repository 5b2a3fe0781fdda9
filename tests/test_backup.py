import json
from datetime import datetime

import pytest

from backup import (
    LocalBlobStore,
    backup_name,
    dump_snapshot,
    prune_backups,
    validate_snapshot,
)


def _document(**overrides) -> dict:
    doc = {
        "users": [{"id": "u1", "name": "Anna", "incomeData": {}}],
        "accounts": [{"id": "a1", "name": "Lönekonto"}],
        "buckets": [
            {
                "id": "b1",
                "accountId": "a1",
                "name": "Hyra",
                "type": "FIXED",
                "monthlyData": {"2025-03": {"amount": 9000}},
            }
        ],
        "settings": {"payday": 25},
        "transactions": [],
        "importRules": [],
        "mainCategories": [{"id": "1", "name": "Boende"}],
        "subCategories": [{"id": "101", "mainCategoryId": "1", "name": "Hyra"}],
        "budgetGroups": [],
        "budgetTemplates": [],
        "monthConfigs": [],
    }
    doc.update(overrides)
    return doc


def test_valid_document() -> None:
    result = validate_snapshot(json.dumps(_document()))
    assert result.ok
    assert result.snapshot.buckets[0].monthly_data["2025-03"].amount == 9000


def test_missing_and_null_sections_get_defaults() -> None:
    result = validate_snapshot({"users": None, "accounts": []})
    assert result.ok
    assert result.snapshot.users == []
    assert result.snapshot.settings.payday == 25


def test_rejects_non_json_and_non_objects() -> None:
    assert not validate_snapshot("{not json").ok
    assert validate_snapshot("[1, 2]").error == "Backup must be a JSON object"


def test_reports_location_of_invalid_field() -> None:
    result = validate_snapshot(_document(settings={"payday": 40}))
    assert not result.ok
    assert "settings.payday" in result.error


def test_rejects_dangling_references() -> None:
    result = validate_snapshot(
        _document(subCategories=[{"id": "101", "mainCategoryId": "9", "name": "X"}])
    )
    assert not result.ok
    assert "unknown main category" in result.error

    result = validate_snapshot(_document(accounts=[]))
    assert not result.ok
    assert "unknown account" in result.error


def test_rejects_two_default_templates() -> None:
    templates = [
        {"id": "t1", "name": "A", "isDefault": True},
        {"id": "t2", "name": "B", "isDefault": True},
    ]
    result = validate_snapshot(_document(budgetTemplates=templates))
    assert result.error == "Backup has more than one default template"


def test_rejects_duplicate_ids_within_a_section() -> None:
    txn = {"id": "t1", "accountId": "a1", "date": "2025-03-01", "amount": -10}
    result = validate_snapshot(_document(transactions=[txn, dict(txn)]))
    assert not result.ok
    assert result.error == "Backup has duplicate id t1 in transactions"

    rules = [{"id": "r1", "keyword": "ica"}, {"id": "r1", "keyword": "coop"}]
    assert "importRules" in validate_snapshot(_document(importRules=rules)).error

    configs = [{"monthKey": "2025-03"}, {"monthKey": "2025-03"}]
    assert "monthConfigs" in validate_snapshot(_document(monthConfigs=configs)).error


def test_dump_uses_camel_case() -> None:
    snapshot = validate_snapshot(_document()).snapshot
    dumped = json.loads(dump_snapshot(snapshot))
    assert "mainCategories" in dumped
    month = dumped["buckets"][0]["monthlyData"]["2025-03"]
    assert month["isExplicitlyDeleted"] is False


def test_local_store_round_trip(tmp_path) -> None:
    store = LocalBlobStore(tmp_path / "backups")
    info = store.create("budget-backup-20250301-031500.json", "{}")

    assert info.size == 2
    assert [b.name for b in store.list()] == ["budget-backup-20250301-031500.json"]
    assert store.read(info.name) == "{}"

    store.delete(info.name)
    assert store.list() == []
    with pytest.raises(ValueError, match="Backup not found"):
        store.read(info.name)


def test_local_store_rejects_path_like_names(tmp_path) -> None:
    store = LocalBlobStore(tmp_path)
    with pytest.raises(ValueError):
        store.create("../outside.json", "{}")
    with pytest.raises(ValueError):
        store.read("notes.txt")


def test_prune_keeps_newest_automatic_backups(tmp_path) -> None:
    store = LocalBlobStore(tmp_path)
    for day in (1, 2, 3, 4):
        store.create(backup_name(datetime(2025, 3, day, 3, 15)), "{}")
    store.create("manual-export.json", "{}")

    removed = prune_backups(store, keep=2)

    assert removed == [
        "budget-backup-20250302-031500.json",
        "budget-backup-20250301-031500.json",
    ]
    assert sorted(b.name for b in store.list()) == [
        "budget-backup-20250303-031500.json",
        "budget-backup-20250304-031500.json",
        "manual-export.json",
    ]
