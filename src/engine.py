"""Command engine: the primitive task operations built on the core modules.

Every mutating operation follows the same sequence: parse the filter, load
both partitions, mutate owned copies in memory (running hooks per task),
then, only if something changed, push an undo snapshot of the state as it
was before the operation and save both partitions. Any failure before that
point leaves the files untouched.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dates import format_compact, utc_now
from errors import NotFoundError, ParseError, RecordParseError, TaskTrailError
from filters import Filter
from hooks import HookRunner
from models import ACTIVE_STATUSES, TERMINAL_STATUSES, Annotation, Status, Task
from modifications import apply_mods, parse_description_and_mods, parse_mods
from reports import ReportTable, build_report, is_report, load_report_spec, report_names
from settings import Config
from storage import Snapshot, TaskStore

logger = logging.getLogger(__name__)

COMMANDS: Tuple[str, ...] = (
    "add", "annotate", "append", "context", "delete", "denotate", "done",
    "duplicate", "export", "import", "info", "list", "log", "modify", "next",
    "prepend", "projects", "start", "stop", "tags", "undo",
)

Mutation = Callable[[Task, datetime], bool]


def known_commands(config: Config) -> List[str]:
    """Built-in commands plus every report defined in ``config``."""
    return sorted(set(COMMANDS) | set(report_names(config)))


@dataclass
class CommandResult:
    count: int
    message: str
    tasks: List[Task] = field(default_factory=list)


class TaskEngine:
    def __init__(self, store: TaskStore, config: Optional[Config] = None,
                 hooks: Optional[HookRunner] = None, tz: Optional[tzinfo] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.config = config or Config()
        self.hooks = hooks or HookRunner(store.hooks_dir, enabled=False)
        self.tz = tz
        self.clock = clock

    # -------------------- helpers --------------------
    def effective_filter_terms(self, terms: Sequence[str]) -> List[str]:
        """Prefix the active context's filter, when one is set."""
        out: List[str] = []
        active = self.store.get_active_context()
        if active:
            expr = self.config.get(f"context.{active}")
            if expr:
                out.extend(expr.split())
            else:
                logger.warning("active context %r has no definition; ignoring", active)
        out.extend(terms)
        return out

    def _filter(self, terms: Sequence[str], now: datetime) -> Filter:
        return Filter.parse(self.effective_filter_terms(terms), now, self.tz)

    def _load(self) -> Tuple[List[Task], List[Task], Snapshot]:
        pending = self.store.load_pending()
        completed = self.store.load_completed()
        before = ([t.copy() for t in pending], [t.copy() for t in completed])
        return pending, completed, before

    def _partition(self, pending: List[Task], completed: List[Task]) -> Snapshot:
        """Route each task to the partition its status belongs in."""
        new_pending = [t for t in pending if t.status in ACTIVE_STATUSES]
        new_pending += [t for t in completed if t.status in ACTIVE_STATUSES]
        new_completed = [t for t in completed if t.status in TERMINAL_STATUSES]
        new_completed += [t for t in pending if t.status in TERMINAL_STATUSES]
        for task in new_completed:
            task.id = None
        for task in new_pending:
            if task.id is None:
                task.id = self.store.next_id(new_pending)
        new_pending.sort(key=lambda t: t.id)  # type: ignore[arg-type,return-value]
        return new_pending, new_completed

    def _commit(self, before: Snapshot, pending: List[Task], completed: List[Task]) -> Snapshot:
        pending, completed = self._partition(pending, completed)
        self.store.push_undo_snapshot(*before)
        self.store.save_pending(pending)
        self.store.save_completed(completed)
        logger.debug("committed %d pending, %d completed", len(pending), len(completed))
        return pending, completed

    def _apply(self, filter_terms: Sequence[str], mutate: Mutation,
               include_completed: bool = True) -> Tuple[int, List[Task]]:
        """Run ``mutate`` on every task in the working set that matches.

        The working set is the pending/waiting tasks, widened to the
        completed partition when the filter names a status or an identity.
        """
        now = self.clock()
        task_filter = self._filter(filter_terms, now)
        pending, completed, before = self._load()
        widen = task_filter.has_explicit_status_filter() or task_filter.has_identity_selector()
        partitions = [pending, completed] if widen and include_completed else [pending]

        touched: List[Task] = []
        for partition in partitions:
            for idx, task in enumerate(partition):
                if not widen and task.status not in ACTIVE_STATUSES:
                    continue
                if not task_filter.matches(task, now):
                    continue
                old = task.copy()
                if not mutate(task, now):
                    continue
                task.modified = now
                partition[idx] = self.hooks.apply_on_modify(old, task)
                touched.append(partition[idx])
        if touched:
            self._commit(before, pending, completed)
        return len(touched), touched

    # -------------------- lifecycle --------------------
    def run_on_launch(self) -> None:
        self.hooks.run_on_launch()

    def add(self, args: Sequence[str]) -> CommandResult:
        now = self.clock()
        description, mods = parse_description_and_mods(args, now, self.tz)
        pending, completed, before = self._load()
        next_id = self.store.next_id(pending)
        task = Task.new_pending(description, now, next_id)
        apply_mods(task, mods, now)
        task = self.hooks.apply_on_add(task)
        if task.id is None:
            task.id = next_id
        pending.append(task)
        self._commit(before, pending, completed)
        logger.info("added task %s", task.uuid)
        label = task.id if task.id is not None else task.uuid
        return CommandResult(1, f"Created task {label}.", [task])

    def log(self, args: Sequence[str]) -> CommandResult:
        """Record a task that is already done."""
        now = self.clock()
        description, mods = parse_description_and_mods(args, now, self.tz)
        pending, completed, before = self._load()
        task = Task.new_pending(description, now)
        apply_mods(task, mods, now)
        task.finish(Status.COMPLETED, now)
        task = self.hooks.apply_on_add(task)
        completed.append(task)
        self._commit(before, pending, completed)
        return CommandResult(1, f"Logged task {task.uuid}.", [task])

    def modify(self, filter_terms: Sequence[str], args: Sequence[str]) -> CommandResult:
        now = self.clock()
        mods = parse_mods(args, now, self.tz)
        if not mods:
            raise ParseError("modify requires at least one modification")

        def mutate(task: Task, when: datetime) -> bool:
            apply_mods(task, mods, when)
            return True

        count, tasks = self._apply(filter_terms, mutate)
        return CommandResult(count, f"Modified {count} task(s).", tasks)

    def append(self, filter_terms: Sequence[str], args: Sequence[str]) -> CommandResult:
        text = _require_text(args, "append")
        count, tasks = self._apply(filter_terms, _set_description(lambda d: f"{d} {text}"))
        return CommandResult(count, f"Modified {count} task(s).", tasks)

    def prepend(self, filter_terms: Sequence[str], args: Sequence[str]) -> CommandResult:
        text = _require_text(args, "prepend")
        count, tasks = self._apply(filter_terms, _set_description(lambda d: f"{text} {d}"))
        return CommandResult(count, f"Modified {count} task(s).", tasks)

    def start(self, filter_terms: Sequence[str]) -> CommandResult:
        def mutate(task: Task, now: datetime) -> bool:
            if task.status != Status.PENDING or task.is_waiting(now) or task.start is not None:
                return False
            task.start = now
            return True

        count, tasks = self._apply(filter_terms, mutate, include_completed=False)
        return CommandResult(count, f"Started {count} task(s).", tasks)

    def stop(self, filter_terms: Sequence[str]) -> CommandResult:
        def mutate(task: Task, now: datetime) -> bool:
            if task.start is None or task.status not in ACTIVE_STATUSES:
                return False
            task.start = None
            return True

        count, tasks = self._apply(filter_terms, mutate, include_completed=False)
        return CommandResult(count, f"Stopped {count} task(s).", tasks)

    def done(self, filter_terms: Sequence[str]) -> CommandResult:
        count, tasks = self._apply(filter_terms, _finisher(Status.COMPLETED), include_completed=False)
        return CommandResult(count, f"Completed {count} task(s).", tasks)

    def delete(self, filter_terms: Sequence[str]) -> CommandResult:
        count, tasks = self._apply(filter_terms, _finisher(Status.DELETED), include_completed=False)
        return CommandResult(count, f"Deleted {count} task(s).", tasks)

    def annotate(self, filter_terms: Sequence[str], args: Sequence[str]) -> CommandResult:
        note = _require_text(args, "annotate")

        def mutate(task: Task, now: datetime) -> bool:
            task.annotations.append(Annotation(entry=now, description=note))
            return True

        count, tasks = self._apply(filter_terms, mutate)
        return CommandResult(count, f"Annotated {count} task(s).", tasks)

    def denotate(self, filter_terms: Sequence[str], args: Sequence[str]) -> CommandResult:
        """Remove annotations by 1-based index, or by case-insensitive substring."""
        if not args:
            raise ParseError("denotate requires an index or text selector")
        index: Optional[int] = None
        if len(args) == 1 and args[0].isdigit() and int(args[0]) > 0:
            index = int(args[0])
        needle = ' '.join(args).lower()
        removed = 0

        def mutate(task: Task, now: datetime) -> bool:
            nonlocal removed
            before = len(task.annotations)
            if index is not None:
                if index <= before:
                    del task.annotations[index - 1]
            else:
                task.annotations = [a for a in task.annotations if needle not in a.description.lower()]
            removed += before - len(task.annotations)
            return len(task.annotations) < before

        count, tasks = self._apply(filter_terms, mutate)
        return CommandResult(count, f"Removed {removed} annotation(s) from {count} task(s).", tasks)

    def duplicate(self, filter_terms: Sequence[str]) -> CommandResult:
        now = self.clock()
        task_filter = self._filter(filter_terms, now)
        pending, completed, before = self._load()
        next_id = self.store.next_id(pending)
        clones: List[Task] = []
        for task in pending:
            if task.status not in ACTIVE_STATUSES or not task_filter.matches(task, now):
                continue
            clone = Task.new_pending(task.description, now, next_id)
            for name in ("project", "priority", "due", "scheduled", "wait"):
                setattr(clone, name, getattr(task, name))
            clone.tags = list(task.tags)
            clone.depends = list(task.depends)
            clone.annotations = [Annotation(a.entry, a.description) for a in task.annotations]
            clone.extra = json.loads(json.dumps(task.extra))
            clone = self.hooks.apply_on_add(clone)
            if clone.id is None:
                clone.id = next_id
            next_id = max(next_id, clone.id) + 1
            clones.append(clone)
        if clones:
            self._commit(before, pending + clones, completed)
        return CommandResult(len(clones), f"Duplicated {len(clones)} task(s).", clones)

    def undo(self) -> CommandResult:
        snapshot = self.store.pop_undo_snapshot()
        if snapshot is None:
            return CommandResult(0, "No undo transactions available.")
        pending, completed = snapshot
        self.store.save_pending(pending)
        self.store.save_completed(completed)
        logger.info("restored undo snapshot (%d pending, %d completed)", len(pending), len(completed))
        return CommandResult(1, "Undo completed.")

    # -------------------- queries --------------------
    def report(self, name: str, filter_terms: Sequence[str] = ()) -> ReportTable:
        if name == "list" and not is_report(self.config, "list"):
            name = "next"
        spec = load_report_spec(self.config, name)
        if spec is None:
            raise NotFoundError(f"unknown report: {name}")
        now = self.clock()
        tasks = self.store.load_pending() + self.store.load_completed()
        return build_report(spec, tasks, now, self.effective_filter_terms(filter_terms), self.tz)

    def info(self, filter_terms: Sequence[str]) -> List[Task]:
        now = self.clock()
        task_filter = self._filter(filter_terms, now)
        rows = [t for t in self.store.load_pending() + self.store.load_completed()
                if task_filter.matches(t, now)]
        if not rows:
            raise NotFoundError("no matching tasks", filter=' '.join(filter_terms) or '<none>')
        rows.sort(key=lambda t: (t.id is None, t.id or 0, t.uuid))
        return rows

    def projects(self) -> List[str]:
        return sorted({t.project for t in self.store.load_pending() if t.project})

    def tags(self) -> List[str]:
        return sorted({tag for t in self.store.load_pending() for tag in t.tags})

    def context(self, args: Sequence[str]) -> CommandResult:
        """List contexts, activate one, or clear with ``none``/``clear``."""
        defined = self.config.keys_with_prefix("context.")
        if not args:
            active = self.store.get_active_context() or "none"
            lines = [f"active={active}"] + [f"{name} {expr}" for name, expr in sorted(defined.items())]
            return CommandResult(len(defined), '\n'.join(lines))
        name = args[0]
        if name.lower() in ("none", "clear"):
            self.store.set_active_context(None)
            return CommandResult(0, "Context cleared.")
        if name not in defined:
            raise NotFoundError(f"unknown context: {name}")
        self.store.set_active_context(name)
        return CommandResult(1, f"Context set: {name}")

    # -------------------- import / export --------------------
    def export(self, filter_terms: Sequence[str] = (), ndjson: Optional[bool] = None) -> str:
        """Serialize matching tasks; waiting tasks are never hidden here."""
        if ndjson is None:
            ndjson = (self.config.get("export.format") or "json").lower() in ("ndjson", "jsonl")
        now = self.clock()
        task_filter = Filter.parse(filter_terms, now, self.tz)
        rows = [t.to_dict() for t in self.store.load_pending() + self.store.load_completed()
                if task_filter.matches_without_waiting_guard(t, now)]
        if ndjson:
            return '\n'.join(json.dumps(r, ensure_ascii=False) for r in rows)
        return json.dumps(rows, ensure_ascii=False)

    def import_tasks(self, text: str) -> CommandResult:
        now = self.clock()
        items = parse_import_items(text)
        pending, completed, before = self._load()
        added = modified = 0
        for raw in items:
            existing = _find(pending, completed, raw.get("uuid"))
            task = _normalize_import(raw, now)
            _normalize_identity(task, existing, self.store.next_id(pending), now)
            if existing is not None:
                task = self.hooks.apply_on_modify(existing, task)
                modified += 1
            else:
                task = self.hooks.apply_on_add(task)
                added += 1
            _normalize_identity(task, existing, self.store.next_id(pending), now)
            _upsert(pending, completed, task, existing)
        count = added + modified
        if count:
            self._commit(before, pending, completed)
        return CommandResult(count, f"Imported {count} task(s) ({added} added, {modified} modified).")


# -------------------- mutation builders --------------------
def _require_text(args: Sequence[str], command: str) -> str:
    text = ' '.join(args).strip()
    if not text:
        raise ParseError(f"{command} requires text")
    return text


def _set_description(build: Callable[[str], str]) -> Mutation:
    def mutate(task: Task, now: datetime) -> bool:
        task.description = build(task.description).strip()
        return True
    return mutate


def _finisher(status: Status) -> Mutation:
    def mutate(task: Task, now: datetime) -> bool:
        if task.status not in ACTIVE_STATUSES:
            return False
        task.finish(status, now)
        return True
    return mutate


# -------------------- import helpers --------------------
def parse_import_items(text: str) -> List[Dict[str, Any]]:
    """Accept a JSON array, a single JSON object, or one object per line."""
    trimmed = text.strip()
    if not trimmed:
        raise ParseError("import: empty input")
    if trimmed.startswith('['):
        try:
            items = json.loads(trimmed)
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid JSON array: {exc.msg}", path="<import>", line=exc.lineno) from exc
        if not all(isinstance(i, dict) for i in items):
            raise RecordParseError("import array must contain JSON objects", path="<import>")
        return items
    if trimmed.startswith('{'):
        try:
            item = json.loads(trimmed)
        except json.JSONDecodeError:
            item = None
        if isinstance(item, dict):
            return [item]
    out: List[Dict[str, Any]] = []
    for line_num, line in enumerate(trimmed.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid JSON: {exc.msg}", path="<import>", line=line_num) from exc
        if not isinstance(item, dict):
            raise RecordParseError("expected a JSON object", path="<import>", line=line_num)
        out.append(item)
    return out


def _find(pending: List[Task], completed: List[Task], ref: Any) -> Optional[Task]:
    if not ref:
        return None
    ref = str(ref).lower()
    for task in pending + completed:
        if task.uuid == ref:
            return task.copy()
    return None


def _normalize_import(raw: Dict[str, Any], now: datetime) -> Task:
    data = dict(raw)
    data.pop("id", None)
    if not data.get("uuid"):
        data["uuid"] = Task.new_pending("", now).uuid
    if not str(data.get("description") or '').strip():
        raise ParseError("import: task has no description", uuid=data["uuid"])
    data.setdefault("status", Status.PENDING.value)
    stamp = format_compact(now)
    for key in ("entry", "modified"):
        if data.get(key) is None:
            data[key] = stamp
    try:
        return Task.from_dict(data)
    except TaskTrailError as exc:
        raise RecordParseError(f"import: {exc}", path="<import>") from exc


def _normalize_identity(task: Task, existing: Optional[Task], next_id: int, now: datetime) -> None:
    if task.status == Status.WAITING and not task.is_waiting(now):
        task.status = Status.PENDING
    if task.status in ACTIVE_STATUSES:
        task.end = None
        if existing is not None and existing.status in ACTIVE_STATUSES and existing.id is not None:
            task.id = existing.id
        elif task.id is None:
            task.id = next_id
    else:
        if task.end is None:
            task.end = task.modified
        task.start = None
        task.id = None


def _upsert(pending: List[Task], completed: List[Task], task: Task, existing: Optional[Task]) -> None:
    gone = {task.uuid} | ({existing.uuid} if existing else set())
    pending[:] = [t for t in pending if t.uuid not in gone]
    completed[:] = [t for t in completed if t.uuid not in gone]
    (completed if task.status in TERMINAL_STATUSES else pending).append(task)
