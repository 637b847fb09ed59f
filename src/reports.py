"""Report definitions, sorting and urgency scoring.

A report is configured under ``report.NAME.*`` keys (columns, labels, sort,
filter, limit). Building one filters the given tasks, sorts them with a
stable multi-key comparison and formats each requested column as text.
"""
from __future__ import annotations
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dates import format_project_date
from filters import Filter
from models import Status, Task
from settings import Config

logger = logging.getLogger(__name__)


class Column(str, Enum):
    ID = "id"
    UUID = "uuid"
    STATUS = "status"
    PROJECT = "project"
    TAGS = "tags"
    PRIORITY = "priority"
    DUE = "due"
    SCHEDULED = "scheduled"
    WAIT = "wait"
    ENTRY = "entry"
    MODIFIED = "modified"
    END = "end"
    START = "start"
    DESCRIPTION = "description"
    URGENCY = "urgency"

    @classmethod
    def parse(cls, token: str) -> Optional["Column"]:
        name = token.strip().lower()
        name = COLUMN_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return None

    @property
    def default_label(self) -> str:
        return DEFAULT_LABELS[self]


COLUMN_ALIASES = {"tag": "tags", "pri": "priority", "desc": "description"}
DEFAULT_LABELS: Dict[Column, str] = {
    Column.ID: "ID", Column.UUID: "UUID", Column.STATUS: "Status",
    Column.PROJECT: "Project", Column.TAGS: "Tags", Column.PRIORITY: "Pri",
    Column.DUE: "Due", Column.SCHEDULED: "Scheduled", Column.WAIT: "Wait",
    Column.ENTRY: "Entry", Column.MODIFIED: "Modified", Column.END: "End",
    Column.START: "Start", Column.DESCRIPTION: "Description", Column.URGENCY: "Urgency",
}


@dataclass(frozen=True)
class SortKey:
    column: Column
    descending: bool = False


@dataclass
class ReportSpec:
    name: str
    columns: List[Column]
    labels: List[str] = field(default_factory=list)
    sort: List[SortKey] = field(default_factory=list)
    filter_terms: List[str] = field(default_factory=list)
    limit: Optional[int] = None

    def __post_init__(self) -> None:
        labels = list(self.labels[:len(self.columns)])
        while len(labels) < len(self.columns):
            labels.append(self.columns[len(labels)].default_label)
        self.labels = labels


@dataclass
class ReportTable:
    name: str
    labels: List[str]
    rows: List[List[str]]
    tasks: List[Task]


# -------------------- configuration --------------------
def parse_config_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [tok for part in raw.split(',') for tok in part.split() if tok]


def parse_sort_keys(raw: Optional[str]) -> List[SortKey]:
    keys: List[SortKey] = []
    for token in parse_config_list(raw):
        descending = token.endswith('-')
        name = token[:-1] if token[-1] in '+-' else token
        column = Column.parse(name)
        if column is None:
            logger.warning("ignoring unknown sort column %r", token)
            continue
        keys.append(SortKey(column, descending))
    return keys


def is_report(config: Config, name: str) -> bool:
    return config.get(f"report.{name}.columns") is not None


def report_names(config: Config) -> List[str]:
    return sorted({key.split('.', 1)[0] for key in config.keys_with_prefix("report.")
                   if key.endswith(".columns")})


def load_report_spec(config: Config, name: str) -> Optional[ReportSpec]:
    prefix = f"report.{name}."
    columns = [c for c in (Column.parse(t) for t in parse_config_list(config.get(prefix + "columns")))
               if c is not None]
    if not columns:
        return None
    limit: Optional[int] = None
    raw_limit = config.get(prefix + "limit")
    if raw_limit:
        try:
            limit = int(raw_limit) if int(raw_limit) > 0 else None
        except ValueError:
            logger.warning("ignoring invalid limit %r for report %s", raw_limit, name)
    return ReportSpec(
        name=name,
        columns=columns,
        labels=parse_config_list(config.get(prefix + "labels")),
        sort=parse_sort_keys(config.get(prefix + "sort")),
        filter_terms=(config.get(prefix + "filter") or '').split(),
        limit=limit,
    )


# -------------------- urgency --------------------
PRIORITY_URGENCY = {"H": 6.0, "M": 3.9, "L": 1.8}
TAG_COEFFICIENT = 0.8
ACTIVE_URGENCY = 4.0
WAITING_URGENCY = -3.0
BLOCKED_URGENCY = -5.0
# (upper bound in days, contribution); checked in order
DUE_BUCKETS: Tuple[Tuple[float, float], ...] = (
    (-1.0, 9.7), (0.0, 9.3), (1.0, 8.8), (2.0, 8.4), (7.0, 6.0),
)
DUE_FAR = 3.0


def urgency(task: Task, now: datetime) -> float:
    """Fixed heuristic score; terminal tasks always score 0."""
    if task.status in (Status.COMPLETED, Status.DELETED):
        return 0.0
    waiting = task.is_waiting(now)
    score = TAG_COEFFICIENT * len(task.tags)
    if task.priority:
        score += PRIORITY_URGENCY.get(task.priority.upper(), 0.0)
    if task.start is not None and not waiting:
        score += ACTIVE_URGENCY
    if waiting:
        score += WAITING_URGENCY
    if task.depends:
        score += BLOCKED_URGENCY
    if task.due is not None:
        days = (task.due - now).total_seconds() / 86400.0
        for bound, value in DUE_BUCKETS:
            if days <= bound:
                score += value
                break
        else:
            score += DUE_FAR
    return score


# -------------------- sorting --------------------
def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _cmp_optional(a: Any, b: Any) -> int:
    # absent values sort first in ascending order
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    return _cmp(a, b)


def compare_on_column(a: Task, b: Task, column: Column, now: datetime) -> int:
    if column == Column.ID:
        return _cmp_optional(a.id, b.id)
    if column == Column.UUID:
        return _cmp(a.uuid, b.uuid)
    if column == Column.STATUS:
        return _cmp(a.display_status(now), b.display_status(now))
    if column == Column.TAGS:
        return _cmp(' '.join(sorted(a.tags)), ' '.join(sorted(b.tags)))
    if column == Column.DESCRIPTION:
        return _cmp(a.description.lower(), b.description.lower())
    if column == Column.URGENCY:
        return _cmp(urgency(a, now), urgency(b, now))
    if column in (Column.ENTRY, Column.MODIFIED):
        return _cmp(getattr(a, column.value), getattr(b, column.value))
    return _cmp_optional(getattr(a, column.value), getattr(b, column.value))


def compare_tasks(a: Task, b: Task, keys: Sequence[SortKey], now: datetime) -> int:
    for key in keys:
        ordering = compare_on_column(a, b, key.column, now)
        if ordering:
            return -ordering if key.descending else ordering
    a_id = a.id if a.id is not None else float('inf')
    b_id = b.id if b.id is not None else float('inf')
    return _cmp(a_id, b_id) or _cmp(a.uuid, b.uuid)


def sort_tasks(tasks: Sequence[Task], keys: Sequence[SortKey], now: datetime) -> List[Task]:
    return sorted(tasks, key=functools.cmp_to_key(lambda a, b: compare_tasks(a, b, keys, now)))


# -------------------- formatting --------------------
def format_cell(task: Task, column: Column, now: datetime, tz: Optional[tzinfo] = None) -> str:
    if column == Column.ID:
        return str(task.id) if task.id is not None else '-'
    if column == Column.UUID:
        return task.uuid
    if column == Column.STATUS:
        return task.display_status(now)
    if column == Column.PROJECT:
        return task.project or ''
    if column == Column.TAGS:
        return ' '.join(f"+{tag}" for tag in task.tags)
    if column == Column.PRIORITY:
        return task.priority or ''
    if column == Column.DESCRIPTION:
        return task.description
    if column == Column.URGENCY:
        return f"{urgency(task, now):.3f}"
    return format_project_date(getattr(task, column.value), tz)


def build_report(spec: ReportSpec, tasks: Sequence[Task], now: datetime,
                 filter_terms: Sequence[str] = (), tz: Optional[tzinfo] = None) -> ReportTable:
    """Filter (report terms first, then caller terms), sort, limit, format."""
    task_filter = Filter.parse(list(spec.filter_terms) + list(filter_terms), now, tz)
    rows = sort_tasks([t for t in tasks if task_filter.matches(t, now)], spec.sort, now)
    if spec.limit is not None:
        rows = rows[:spec.limit]
    logger.info("report %s: %d row(s)", spec.name, len(rows))
    cells = [[format_cell(t, col, now, tz) for col in spec.columns] for t in rows]
    return ReportTable(name=spec.name, labels=list(spec.labels), rows=cells, tasks=rows)
