"""Persistence for the task store: pending, completed, undo and context files.

Each data file holds one JSON object per line. Saves never write in place:
records go to a temporary file in the same directory, which is flushed,
synced and renamed over the target, so readers see either the old file or
the new one. There is no locking between processes.
"""
from __future__ import annotations
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from errors import RecordParseError, StoreError, TaskTrailError
from models import Task

logger = logging.getLogger(__name__)

PENDING_FILE = "pending.data"
COMPLETED_FILE = "completed.data"
UNDO_FILE = "undo.data"
CONTEXT_FILE = "context.data"

T = TypeVar("T")
Snapshot = Tuple[List[Task], List[Task]]


class TaskStore:
    def __init__(self, data_dir: Path, undo_limit: int = 0):
        self.data_dir = Path(data_dir)
        self.pending_path = self.data_dir / PENDING_FILE
        self.completed_path = self.data_dir / COMPLETED_FILE
        self.undo_path = self.data_dir / UNDO_FILE
        self.context_path = self.data_dir / CONTEXT_FILE
        self.hooks_dir = self.data_dir / "hooks"
        self.undo_limit = undo_limit

    @classmethod
    def open(cls, data_dir: Path, undo_limit: int = 0) -> "TaskStore":
        """Create the data directory and any missing data files."""
        store = cls(data_dir, undo_limit)
        try:
            store.data_dir.mkdir(parents=True, exist_ok=True)
            for path in (store.pending_path, store.completed_path, store.undo_path, store.context_path):
                if not path.exists():
                    path.touch()
        except OSError as exc:
            raise StoreError(f"failed to initialise data directory: {exc.strerror}",
                             path=store.data_dir, action="create") from exc
        logger.info("opened task store at %s", store.data_dir)
        return store

    # -------------------- tasks --------------------
    def load_pending(self) -> List[Task]:
        return _load_lines(self.pending_path, Task.from_dict)

    def load_completed(self) -> List[Task]:
        return _load_lines(self.completed_path, Task.from_dict)

    def save_pending(self, tasks: Sequence[Task]) -> None:
        _save_lines_atomic(self.pending_path, (t.to_dict() for t in tasks))

    def save_completed(self, tasks: Sequence[Task]) -> None:
        _save_lines_atomic(self.completed_path, (t.to_dict() for t in tasks))

    @staticmethod
    def next_id(pending: Iterable[Task]) -> int:
        return max((t.id for t in pending if t.id is not None), default=0) + 1

    # -------------------- undo --------------------
    def push_undo_snapshot(self, pending: Sequence[Task], completed: Sequence[Task]) -> None:
        entries = self._load_undo_entries()
        entries.append({
            "pending": [t.to_dict() for t in pending],
            "completed": [t.to_dict() for t in completed],
        })
        if self.undo_limit > 0:
            entries = entries[-self.undo_limit:]
        _save_lines_atomic(self.undo_path, entries)
        logger.debug("pushed undo snapshot (%d entries)", len(entries))

    def pop_undo_snapshot(self) -> Optional[Snapshot]:
        """Remove and return the latest snapshot; None when the log is empty."""
        entries = self._load_undo_entries()
        if not entries:
            logger.info("nothing to undo")
            return None
        entry = entries.pop()
        snapshot = (_decode_snapshot_side(entry, "pending", self.undo_path),
                    _decode_snapshot_side(entry, "completed", self.undo_path))
        _save_lines_atomic(self.undo_path, entries)
        return snapshot

    def undo_depth(self) -> int:
        return len(self._load_undo_entries())

    def _load_undo_entries(self) -> List[dict]:
        def check(raw: Any) -> dict:
            if not isinstance(raw, dict) or "pending" not in raw or "completed" not in raw:
                raise RecordParseError("undo entry must hold pending and completed lists")
            return raw
        return _load_lines(self.undo_path, check)

    # -------------------- context --------------------
    def get_active_context(self) -> Optional[str]:
        try:
            text = self.context_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"failed reading context: {exc.strerror}", path=self.context_path,
                             action="read") from exc
        return text or None

    def set_active_context(self, name: Optional[str]) -> None:
        _write_atomic(self.context_path, name or '')


# -------------------- line-oriented JSON helpers --------------------
def _load_lines(path: Path, decode: Callable[[Any], T]) -> List[T]:
    logger.debug("loading %s", path)
    try:
        with open(path, 'rb') as f:
            lines = f.read().split(b'\n')
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise StoreError(f"failed reading store file: {exc.strerror}", path=path, action="read") from exc
    out: List[T] = []
    for line_num, raw in enumerate(lines, start=1):
        try:
            line = raw.decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise RecordParseError(f"invalid UTF-8 at byte {exc.start}", path=path, line=line_num) from exc
        if not line:
            continue
        try:
            out.append(decode(json.loads(line)))
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid JSON: {exc.msg}", path=path, line=line_num) from exc
        except TaskTrailError as exc:
            raise RecordParseError(getattr(exc, "message", str(exc)), path=path, line=line_num) from exc
    logger.debug("loaded %d record(s) from %s", len(out), path.name)
    return out


def _decode_snapshot_side(entry: dict, side: str, path: Path) -> List[Task]:
    try:
        return [Task.from_dict(raw) for raw in entry[side]]
    except TaskTrailError as exc:
        raise RecordParseError(f"corrupt undo snapshot ({side}): {exc}", path=path) from exc


def _save_lines_atomic(path: Path, records: Iterable[Any]) -> None:
    payload = ''.join(json.dumps(r, ensure_ascii=False) + '\n' for r in records)
    _write_atomic(path, payload)


def _write_atomic(path: Path, content: str) -> None:
    """Write to a temp file beside ``path`` then rename it into place."""
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    except OSError as exc:
        raise StoreError(f"failed to create temporary file: {exc.strerror}", path=path,
                         action="create") from exc
    action = "write"
    try:
        with os.fdopen(fd, 'w', encoding="utf-8") as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        action = "rename"
        os.replace(tmp_name, path)
    except OSError as exc:
        raise StoreError(f"failed to persist store file: {exc.strerror or exc}", path=path,
                         action=action) from exc
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
    logger.debug("saved %s", path)
