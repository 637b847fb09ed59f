"""Typed modifications parsed from command arguments.

``+tag``/``-tag`` add or remove a tag; ``key:value`` (or ``key=value``) sets
project, priority, due, scheduled, wait or depends. An empty value clears the
attribute. Date values go through the date expression parser.
"""
from __future__ import annotations
import logging
import uuid as uuidlib
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import List, Optional, Sequence, Tuple

from dates import parse_date_expr
from errors import ParseError
from models import Status, Task

logger = logging.getLogger(__name__)

KEY_ALIASES = {"pri": "priority"}
DATE_KEYS = ("due", "scheduled", "wait")
VALUE_KEYS = ("project", "priority", "depends") + DATE_KEYS


@dataclass(frozen=True)
class Modification:
    kind: str
    value: object = None


def parse_modification(token: str, now: datetime, tz: Optional[tzinfo] = None) -> Optional[Modification]:
    """Return the modification a token denotes, or None for plain words."""
    if token.startswith('+') and len(token) > 1:
        return Modification("tag_add", token[1:])
    if token.startswith('-') and len(token) > 1:
        return Modification("tag_remove", token[1:])

    sep = min((i for i in (token.find(':'), token.find('=')) if i > 0), default=-1)
    if sep < 0:
        return None
    key = token[:sep].lower()
    key = KEY_ALIASES.get(key, key)
    if key not in VALUE_KEYS:
        return None
    value = token[sep + 1:]

    if not value:
        return Modification(key, None)
    if key in DATE_KEYS:
        return Modification(key, parse_date_expr(value, now, tz))
    if key == "depends":
        refs: List[str] = []
        for part in value.split(','):
            try:
                refs.append(str(uuidlib.UUID(part.strip())))
            except ValueError:
                raise ParseError(f"depends expects task uuids, got {part!r}") from None
        return Modification(key, tuple(refs))
    return Modification(key, value)


def parse_description_and_mods(args: Sequence[str], now: datetime,
                               tz: Optional[tzinfo] = None) -> Tuple[str, List[Modification]]:
    """Split add/log arguments into description words and modifications.

    Everything after a bare ``--`` is description text.
    """
    words: List[str] = []
    mods: List[Modification] = []
    literal = False
    for arg in args:
        if arg == "--" and not literal:
            literal = True
            continue
        mod = None if literal else parse_modification(arg, now, tz)
        if mod is None:
            words.append(arg)
        else:
            mods.append(mod)
    description = ' '.join(words).strip()
    if not description:
        raise ParseError("a description is required")
    return description, mods


def parse_mods(args: Sequence[str], now: datetime, tz: Optional[tzinfo] = None) -> List[Modification]:
    mods: List[Modification] = []
    for arg in args:
        mod = parse_modification(arg, now, tz)
        if mod is None:
            logger.warning("unrecognized modifier %r ignored", arg)
            continue
        mods.append(mod)
    return mods


def apply_mods(task: Task, mods: Sequence[Modification], now: datetime) -> None:
    for mod in mods:
        if mod.kind == "tag_add":
            task.add_tag(str(mod.value))
        elif mod.kind == "tag_remove":
            task.remove_tag(str(mod.value))
        elif mod.kind == "depends":
            if mod.value is None:
                task.depends = []
            else:
                for ref in mod.value:  # type: ignore[union-attr]
                    if ref not in task.depends and ref != task.uuid:
                        task.depends.append(ref)
        elif mod.kind == "wait":
            task.wait = mod.value  # type: ignore[assignment]
            _sync_wait_status(task, now)
        else:
            setattr(task, mod.kind, mod.value)


def _sync_wait_status(task: Task, now: datetime) -> None:
    """Move a task across the pending/waiting boundary after a wait change."""
    if task.status == Status.PENDING and task.wait is not None and task.wait > now:
        task.status = Status.WAITING
    elif task.status == Status.WAITING and (task.wait is None or task.wait <= now):
        task.status = Status.PENDING
