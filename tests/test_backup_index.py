import json

import pytest

from snapshots.errors import IndexFormatError
from snapshots.index import INDEX_VERSION, empty_index, parse_index, serialize_index
from snapshots.types import BackupEntry, FileBackupRecord

OLD_ID = "20231114-221320-000"
NEW_ID = "20231114-221320-300"


def _payload(files, version=INDEX_VERSION):
    return json.dumps({"version": version, "totalSize": 0, "files": files})


def test_serialize_uses_camel_case_keys_and_optional_fields():
    index = empty_index()
    record = FileBackupRecord(
        entries=[
            BackupEntry(id=NEW_ID, created_at=2000, size=4, hash="h2", change_preview="edited", primary_field_value="Alpha"),
            BackupEntry(id=OLD_ID, created_at=1000, size=3, hash="h1", is_initial=True),
        ]
    )
    record.recompute()
    index.files["doc.md"] = record
    index.recompute()

    payload = json.loads(serialize_index(index))

    assert payload["version"] == INDEX_VERSION
    assert payload["totalSize"] == 7
    entries = payload["files"]["doc.md"]["entries"]
    assert payload["files"]["doc.md"]["totalSize"] == 7
    assert entries[0] == {
        "id": NEW_ID,
        "createdAt": 2000,
        "size": 4,
        "hash": "h2",
        "primaryFieldValue": "Alpha",
        "changePreview": "edited",
    }
    assert entries[1] == {"id": OLD_ID, "createdAt": 1000, "size": 3, "hash": "h1", "isInitial": True}


def test_parse_round_trips_serialized_index():
    index = empty_index()
    record = FileBackupRecord(entries=[BackupEntry(id=OLD_ID, created_at=5, size=9, hash="hh", is_initial=True)])
    record.recompute()
    index.files["ünïcode/doc.md"] = record
    index.recompute()

    parsed = parse_index(serialize_index(index))

    assert parsed == index


def test_invalid_json_raises_format_error():
    with pytest.raises(IndexFormatError):
        parse_index("{not json")


@pytest.mark.parametrize("raw", ["[]", "42", '"text"', _payload({}, version=99), json.dumps({"files": {}})])
def test_non_object_or_wrong_version_returns_none(raw):
    assert parse_index(raw) is None


def test_invalid_entries_are_dropped_and_totals_recomputed():
    raw = _payload(
        {
            "doc.md": {
                "totalSize": 12345,
                "entries": [
                    {"id": OLD_ID, "createdAt": 100, "size": 2, "hash": "h"},
                    {"id": NEW_ID, "createdAt": 300, "size": 5, "hash": "h"},
                    {"id": NEW_ID, "createdAt": 400, "size": 7, "hash": "h"},
                    {"id": "", "createdAt": 100, "size": 1, "hash": "h"},
                    {"id": "20231114-221320-001", "createdAt": 100, "size": -1, "hash": "h"},
                    {"id": "20231114-221320-002", "createdAt": 0, "size": 1, "hash": "h"},
                    {"id": "20231114-221320-003", "createdAt": True, "size": 1, "hash": "h"},
                    {"id": "20231114-221320-004", "createdAt": 100, "size": 1},
                    "garbage",
                ],
            },
            "empty.md": {"entries": []},
            "broken.md": "nope",
        }
    )

    index = parse_index(raw)

    assert list(index.files) == ["doc.md"]
    record = index.files["doc.md"]
    assert [entry.id for entry in record.entries] == [NEW_ID, OLD_ID]
    assert record.total_size == 7
    assert index.total_size == 7


def test_zero_size_entries_are_kept():
    raw = _payload({"doc.md": {"entries": [{"id": OLD_ID, "createdAt": 1, "size": 0, "hash": "h"}]}})
    assert parse_index(raw).files["doc.md"].entries[0].size == 0


def test_blank_primary_value_is_discarded():
    raw = _payload(
        {"doc.md": {"entries": [{"id": OLD_ID, "createdAt": 1, "size": 1, "hash": "h", "primaryFieldValue": "  "}]}}
    )
    assert parse_index(raw).files["doc.md"].entries[0].primary_field_value is None


@pytest.mark.parametrize(
    "entry_id",
    ["../../escape", "20231114-221320-000/x", "nested/20231114-221320-000", "20231114-221320", "20231114-221320-000\n"],
)
def test_ids_that_are_not_timestamps_are_dropped(entry_id):
    raw = _payload(
        {
            "doc.md": {
                "entries": [
                    {"id": entry_id, "createdAt": 1, "size": 1, "hash": "h"},
                    {"id": "20231114-221320-000-01", "createdAt": 2, "size": 1, "hash": "h"},
                ]
            }
        }
    )

    record = parse_index(raw).files["doc.md"]

    assert [entry.id for entry in record.entries] == ["20231114-221320-000-01"]
