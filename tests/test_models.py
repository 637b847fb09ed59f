"""Tests for the task record model and its JSON codec."""
from datetime import timedelta

import pytest

from errors import RecordParseError
from models import Annotation, Status, Task, task_from_json, task_to_json


def _full_record():
    return {
        "uuid": "0b7e8a7e-3f4c-4f36-9a43-0c8f1f8d5a11",
        "id": 4,
        "description": "Write quarterly report",
        "status": "pending",
        "entry": "20260210T090000Z",
        "modified": "20260215T120000Z",
        "start": "20260216T080000Z",
        "project": "work",
        "priority": "H",
        "tags": ["writing", "q1"],
        "due": "20260220T170000Z",
        "scheduled": "20260218T090000Z",
        "depends": ["6f1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"],
        "annotations": [{"entry": "20260211T100000Z", "description": "outline done"}],
        "estimate": "3h",
        "review": {"by": "sam", "round": 2},
    }


def test_round_trip_preserves_every_field_including_extras():
    raw = _full_record()
    task = Task.from_dict(raw)
    assert task.extra == {"estimate": "3h", "review": {"by": "sam", "round": 2}}
    assert task.to_dict() == raw
    assert Task.from_dict(task.to_dict()) == task


def test_json_line_round_trip_and_id_stripping():
    task = Task.from_dict(_full_record())
    assert task_from_json(task_to_json(task)) == task
    stripped = task_from_json(task_to_json(task, strip_id=True))
    assert stripped.id is None
    assert stripped.uuid == task.uuid


def test_to_dict_omits_absent_and_empty_fields(now):
    task = Task.new_pending("Buy milk", now, 1)
    data = task.to_dict()
    assert list(data) == ["uuid", "id", "description", "status", "entry", "modified"]
    assert data["entry"] == "20260217T150000Z"


def test_missing_required_field_is_a_record_error():
    raw = _full_record()
    del raw["entry"]
    with pytest.raises(RecordParseError, match="entry"):
        Task.from_dict(raw)


@pytest.mark.parametrize("field,value", [
    ("status", "someday"),
    ("due", "2026-02-20"),
    ("uuid", "not-a-uuid"),
    ("id", -3),
    ("tags", "writing"),
])
def test_malformed_values_are_rejected(field, value):
    raw = _full_record()
    raw[field] = value
    with pytest.raises(RecordParseError):
        Task.from_dict(raw)


def test_legacy_comma_separated_depends_and_duplicate_tags():
    raw = _full_record()
    raw["depends"] = "6f1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d,0b7e8a7e-3f4c-4f36-9a43-0c8f1f8d5a12"
    raw["tags"] = ["a", "b", "a"]
    task = Task.from_dict(raw)
    assert len(task.depends) == 2
    assert task.tags == ["a", "b"]


def test_zero_id_reads_as_no_id():
    raw = _full_record()
    raw["id"] = 0
    assert Task.from_dict(raw).id is None


def test_waiting_is_derived_from_future_wait(now):
    task = Task.new_pending("Later", now, 1)
    assert not task.is_waiting(now)
    task.wait = now + timedelta(days=1)
    assert task.is_waiting(now)
    assert task.status == Status.PENDING
    assert task.display_status(now) == "waiting"
    assert not task.is_waiting(now + timedelta(days=2))


def test_persisted_waiting_status_presents_as_pending_once_wait_passes(now):
    task = Task.new_pending("Later", now, 1)
    task.status = Status.WAITING
    task.wait = now - timedelta(hours=1)
    assert not task.is_waiting(now)
    assert task.display_status(now) == "pending"


def test_finish_clears_id_and_start(now):
    task = Task.new_pending("Ship", now, 3)
    task.start = now - timedelta(hours=2)
    later = now + timedelta(minutes=5)
    task.finish(Status.COMPLETED, later)
    assert task.status == Status.COMPLETED
    assert task.end == later
    assert task.modified == later
    assert task.start is None
    assert task.id is None
    assert task.is_terminal


def test_tags_stay_duplicate_free(now):
    task = Task.new_pending("Tagged", now, 1)
    task.add_tag("home")
    task.add_tag("home")
    task.add_tag("errand")
    task.remove_tag("home")
    assert task.tags == ["errand"]


def test_copy_is_independent(now):
    task = Task.new_pending("Copy me", now, 1)
    task.annotations.append(Annotation(now, "first"))
    clone = task.copy()
    clone.annotations.append(Annotation(now, "second"))
    clone.tags.append("x")
    assert len(task.annotations) == 1
    assert task.tags == []
