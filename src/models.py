"""Data models for tasktrail: Task, Annotation and Status.

Records are stored one JSON object per line. Field names and the compact
``YYYYMMDDTHHMMSSZ`` timestamp form are kept compatible with the classic
text-based task manager format so existing data files load unchanged.
Unknown keys land in ``Task.extra`` and are written back verbatim.
"""
from __future__ import annotations
import copy
import json
import uuid as uuidlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from dates import format_compact, parse_compact
from errors import DateParseError, RecordParseError


class Status(str, Enum):
    PENDING = "pending"
    WAITING = "waiting"
    COMPLETED = "completed"
    DELETED = "deleted"

    @classmethod
    def parse(cls, raw: str) -> "Status":
        try:
            return cls(raw.lower())
        except ValueError:
            raise RecordParseError(f"unknown status: {raw!r}") from None


ACTIVE_STATUSES = (Status.PENDING, Status.WAITING)
TERMINAL_STATUSES = (Status.COMPLETED, Status.DELETED)

# Serialization order; anything outside this tuple is an extra field.
KNOWN_FIELDS = (
    "uuid", "id", "description", "status", "entry", "modified", "end", "start",
    "project", "priority", "tags", "due", "scheduled", "wait", "depends",
    "annotations",
)
_DATE_FIELDS = ("end", "start", "due", "scheduled", "wait")


@dataclass
class Annotation:
    entry: datetime
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"entry": format_compact(self.entry), "description": self.description}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Annotation":
        if not isinstance(raw, Mapping) or "entry" not in raw:
            raise RecordParseError(f"invalid annotation: {raw!r}")
        return cls(entry=_decode_date(raw["entry"], "annotation.entry"),
                   description=str(raw.get("description", "")))


@dataclass
class Task:
    """A single task record.

    Fields:
        uuid: Immutable identity, canonical lowercase UUID string.
        description: Free text, required.
        status: Persisted status (see ``is_waiting`` for the presented one).
        entry / modified: Creation and last-mutation instants (UTC).
        id: Working-set number; only set while pending or waiting.
        end: Completion/deletion instant; set iff completed or deleted.
        start: When work began; set only while active.
        tags / depends: Duplicate-free lists; order carries no meaning.
        extra: Unrecognized fields, preserved across load/save.
    """
    uuid: str
    description: str
    status: Status
    entry: datetime
    modified: datetime
    id: Optional[int] = None
    end: Optional[datetime] = None
    start: Optional[datetime] = None
    project: Optional[str] = None
    priority: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    due: Optional[datetime] = None
    scheduled: Optional[datetime] = None
    wait: Optional[datetime] = None
    depends: List[str] = field(default_factory=list)
    annotations: List[Annotation] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new_pending(cls, description: str, now: datetime, id: Optional[int] = None) -> "Task":
        return cls(uuid=str(uuidlib.uuid4()), description=description,
                   status=Status.PENDING, entry=now, modified=now, id=id)

    # -------------------- derived state --------------------
    def is_waiting(self, now: datetime) -> bool:
        if self.status == Status.WAITING:
            return self.wait is None or self.wait > now
        if self.status == Status.PENDING:
            return self.wait is not None and self.wait > now
        return False

    @property
    def is_active(self) -> bool:
        return self.start is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def display_status(self, now: datetime) -> str:
        if self.is_waiting(now):
            return Status.WAITING.value
        if self.status == Status.WAITING:
            return Status.PENDING.value
        return self.status.value

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def remove_tag(self, tag: str) -> None:
        self.tags = [t for t in self.tags if t != tag]

    def finish(self, status: Status, now: datetime) -> None:
        """Enter a terminal state: stamp end, clear start and id."""
        self.status = status
        self.end = now
        self.start = None
        self.id = None
        self.modified = now

    def copy(self) -> "Task":
        return copy.deepcopy(self)

    # -------------------- serialization --------------------
    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["uuid"] = self.uuid
        if self.id is not None:
            data["id"] = self.id
        data["description"] = self.description
        data["status"] = self.status.value
        data["entry"] = format_compact(self.entry)
        data["modified"] = format_compact(self.modified)
        for name in _DATE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = format_compact(value)
        if self.project is not None:
            data["project"] = self.project
        if self.priority is not None:
            data["priority"] = self.priority
        if self.tags:
            data["tags"] = list(self.tags)
        if self.depends:
            data["depends"] = list(self.depends)
        if self.annotations:
            data["annotations"] = [a.to_dict() for a in self.annotations]
        ordered = {k: data[k] for k in KNOWN_FIELDS if k in data}
        ordered.update((k, v) for k, v in data.items() if k not in ordered)
        return ordered

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Task":
        if not isinstance(raw, Mapping):
            raise RecordParseError(f"expected a JSON object, got {type(raw).__name__}")
        for required in ("uuid", "description", "status", "entry", "modified"):
            if raw.get(required) is None:
                raise RecordParseError(f"missing required field: {required}")
        task = cls(
            uuid=_decode_uuid(raw["uuid"]),
            description=str(raw["description"]),
            status=Status.parse(str(raw["status"])),
            entry=_decode_date(raw["entry"], "entry"),
            modified=_decode_date(raw["modified"], "modified"),
            id=_decode_id(raw.get("id")),
            project=_optional_str(raw.get("project")),
            priority=_optional_str(raw.get("priority")),
            tags=_unique_strings(raw.get("tags")),
            depends=[_decode_uuid(d) for d in _unique_strings(_split_depends(raw.get("depends")))],
            annotations=_decode_annotations(raw.get("annotations")),
            extra={k: v for k, v in raw.items() if k not in KNOWN_FIELDS},
        )
        for name in _DATE_FIELDS:
            value = raw.get(name)
            if value is not None:
                setattr(task, name, _decode_date(value, name))
        return task


def task_to_json(task: Task, strip_id: bool = False) -> str:
    data = task.to_dict()
    if strip_id:
        data.pop("id", None)
    return json.dumps(data, ensure_ascii=False)


def task_from_json(line: str) -> Task:
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as exc:
        raise RecordParseError(f"invalid JSON: {exc.msg}") from exc
    return Task.from_dict(raw)


def _decode_date(value: Any, name: str) -> datetime:
    try:
        return parse_compact(str(value))
    except DateParseError:
        raise RecordParseError(f"malformed timestamp in {name}: {value!r}") from None


def _decode_uuid(value: Any) -> str:
    try:
        return str(uuidlib.UUID(str(value)))
    except ValueError:
        raise RecordParseError(f"malformed uuid: {value!r}") from None


def _decode_id(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise RecordParseError(f"malformed id: {value!r}")
    return value or None


def _decode_annotations(value: Any) -> List[Annotation]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise RecordParseError(f"annotations must be a list, got {value!r}")
    return [Annotation.from_dict(a) for a in value]


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _split_depends(value: Any) -> Any:
    # older files store depends as one comma-separated string
    if isinstance(value, str):
        return [part for part in value.split(',') if part.strip()]
    return value


def _unique_strings(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise RecordParseError(f"expected a list, got {value!r}")
    out: List[str] = []
    for item in value:
        text = str(item).strip()
        if text and text not in out:
            out.append(text)
    return out
