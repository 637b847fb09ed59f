"""Filter predicate engine.

Query tokens are turned into a small boolean expression tree. Adjacent atoms
are joined by an implicit AND; ``or``/``||``, ``and``/``&&`` and parentheses
are also accepted, with AND binding tighter than OR.

Visibility rule: a task presenting as waiting is hidden by ``matches`` unless
the filter names a status (or virtual tag) or selects tasks by identity.
``matches_without_waiting_guard`` skips that rule for export-style callers.
"""
from __future__ import annotations
import logging
import uuid as uuidlib
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Callable, List, Optional, Sequence, Union

from dates import parse_date_expr, to_project_date
from errors import FilterParseError
from models import Status, Task

logger = logging.getLogger(__name__)

OR_TOKENS = ("or", "||")
AND_TOKENS = ("and", "&&")

VIRTUAL_TAGS = ("PENDING", "WAITING", "COMPLETED", "DELETED", "ACTIVE", "READY",
                "BLOCKED", "UNBLOCKED", "DUE", "OVERDUE", "TODAY", "TOMORROW")


# -------------------- predicates --------------------
@dataclass(frozen=True)
class Pred:
    kind: str
    value: object = None

    # kinds that count as an explicit status selection
    STATUS_KINDS = ("status", "waiting", "virtual_include", "virtual_exclude")
    IDENTITY_KINDS = ("id", "uuid")


@dataclass
class And:
    nodes: List["Node"]


@dataclass
class Or:
    nodes: List["Node"]


Node = Union[Pred, And, Or, None]


def parse_atom(term: str, now: datetime, tz: Optional[tzinfo] = None) -> Pred:
    """Map one token to a predicate; tried in a fixed order."""
    if term.startswith('+') and len(term) > 1:
        tag = term[1:]
        return Pred("virtual_include", tag) if tag in VIRTUAL_TAGS else Pred("tag_include", tag)
    if term.startswith('-') and len(term) > 1:
        tag = term[1:]
        return Pred("virtual_exclude", tag) if tag in VIRTUAL_TAGS else Pred("tag_exclude", tag)
    if term.isascii() and term.isdigit():
        return Pred("id", int(term))
    try:
        return Pred("uuid", str(uuidlib.UUID(term)))
    except ValueError:
        pass
    if term.startswith("project:"):
        return Pred("project", term[len("project:"):])
    if term.startswith("status:"):
        value = term[len("status:"):].lower()
        if value == Status.WAITING.value:
            return Pred("waiting")
        if value in (Status.PENDING.value, Status.COMPLETED.value, Status.DELETED.value):
            return Pred("status", Status(value))
        return Pred("text", term)
    if term.startswith("due.before:"):
        return Pred("due_before", parse_date_expr(term[len("due.before:"):], now, tz))
    if term.startswith("due.after:"):
        return Pred("due_after", parse_date_expr(term[len("due.after:"):], now, tz))
    return Pred("text", term)


def eval_pred(pred: Pred, task: Task, now: datetime, tz: Optional[tzinfo] = None) -> bool:
    kind, value = pred.kind, pred.value
    if kind == "id":
        return task.id == value
    if kind == "uuid":
        return task.uuid == value
    if kind == "tag_include":
        return value in task.tags
    if kind == "tag_exclude":
        return value not in task.tags
    if kind == "virtual_include":
        return eval_virtual_tag(str(value), task, now, tz)
    if kind == "virtual_exclude":
        return not eval_virtual_tag(str(value), task, now, tz)
    if kind == "project":
        return task.project == value
    if kind == "status":
        if value == Status.PENDING:
            return task.status in (Status.PENDING, Status.WAITING) and not task.is_waiting(now)
        return task.status == value
    if kind == "waiting":
        return task.is_waiting(now)
    if kind == "due_before":
        return task.due is not None and task.due < value  # type: ignore[operator]
    if kind == "due_after":
        return task.due is not None and task.due > value  # type: ignore[operator]
    if kind == "text":
        return str(value).lower() in task.description.lower()
    raise FilterParseError(f"unknown predicate kind: {kind}")


def eval_virtual_tag(tag: str, task: Task, now: datetime, tz: Optional[tzinfo] = None) -> bool:
    open_ = task.status in (Status.PENDING, Status.WAITING) and not task.is_waiting(now)
    if tag == "PENDING":
        return open_
    if tag == "WAITING":
        return task.is_waiting(now)
    if tag == "COMPLETED":
        return task.status == Status.COMPLETED
    if tag == "DELETED":
        return task.status == Status.DELETED
    if tag == "ACTIVE":
        return open_ and task.start is not None
    if tag == "READY":
        return open_ and not task.depends
    if tag == "BLOCKED":
        return bool(task.depends)
    if tag == "UNBLOCKED":
        return not task.depends
    if task.due is None:
        return False
    if tag == "OVERDUE":
        return task.due < now
    today = to_project_date(now, tz)
    due_day = to_project_date(task.due, tz)
    if tag == "DUE":
        return due_day <= today
    if tag == "TODAY":
        return due_day == today
    if tag == "TOMORROW":
        return due_day == today + timedelta(days=1)
    return False


# -------------------- parsing --------------------
def lex_terms(terms: Sequence[str]) -> List[str]:
    """Split parentheses off tokens: ``(+a`` -> ``(``, ``+a``."""
    out: List[str] = []
    for term in terms:
        current = ''
        for ch in term:
            if ch in '()':
                if current:
                    out.append(current)
                    current = ''
                out.append(ch)
            else:
                current += ch
        if current:
            out.append(current)
    return out


class _Parser:
    def __init__(self, tokens: List[str], now: datetime, tz: Optional[tzinfo]):
        self.tokens = tokens
        self.pos = 0
        self.now = now
        self.tz = tz

    def parse_or(self) -> Node:
        nodes = [self.parse_and()]
        while self._match(OR_TOKENS):
            nodes.append(self.parse_and())
        return nodes[0] if len(nodes) == 1 else Or(nodes)

    def parse_and(self) -> Node:
        nodes = [self.parse_primary()]
        while True:
            if self._match(AND_TOKENS):
                nodes.append(self.parse_primary())
            elif self._at_implicit_and():
                nodes.append(self.parse_primary())
            else:
                break
        return nodes[0] if len(nodes) == 1 else And(nodes)

    def parse_primary(self) -> Node:
        if self._match(("(",)):
            inner = self.parse_or()
            if not self._match((")",)):
                raise FilterParseError("expected ')' in filter expression")
            return inner
        if self.pos >= len(self.tokens):
            raise FilterParseError("unexpected end of filter expression")
        token = self.tokens[self.pos]
        if token == ')' or token.lower() in OR_TOKENS + AND_TOKENS:
            raise FilterParseError(f"unexpected {token!r} in filter expression")
        self.pos += 1
        return parse_atom(token, self.now, self.tz)

    def ensure_end(self) -> None:
        if self.pos < len(self.tokens):
            raise FilterParseError(f"unexpected token in filter expression: {self.tokens[self.pos]}")

    def _match(self, options: Sequence[str]) -> bool:
        if self.pos < len(self.tokens) and self.tokens[self.pos].lower() in options:
            self.pos += 1
            return True
        return False

    def _at_implicit_and(self) -> bool:
        if self.pos >= len(self.tokens):
            return False
        tok = self.tokens[self.pos].lower()
        return tok not in OR_TOKENS and tok != ')'


# -------------------- public API --------------------
def _eval(node: Node, task: Task, now: datetime, tz: Optional[tzinfo]) -> bool:
    if node is None:
        return True
    if isinstance(node, Pred):
        ok = eval_pred(node, task, now, tz)
        logger.debug("predicate %s on %s -> %s", node, task.uuid, ok)
        return ok
    if isinstance(node, And):
        return all(_eval(n, task, now, tz) for n in node.nodes)
    return any(_eval(n, task, now, tz) for n in node.nodes)


def _any_pred(node: Node, test: Callable[[Pred], bool]) -> bool:
    if node is None:
        return False
    if isinstance(node, Pred):
        return test(node)
    return any(_any_pred(n, test) for n in node.nodes)


class Filter:
    def __init__(self, expr: Node = None, tz: Optional[tzinfo] = None):
        self.expr = expr
        self.tz = tz

    @classmethod
    def parse(cls, terms: Sequence[str], now: datetime, tz: Optional[tzinfo] = None) -> "Filter":
        tokens = lex_terms(terms)
        if not tokens:
            return cls(None, tz)
        parser = _Parser(tokens, now, tz)
        expr = parser.parse_or()
        parser.ensure_end()
        logger.debug("parsed filter %s -> %s", list(terms), expr)
        return cls(expr, tz)

    def matches(self, task: Task, now: datetime) -> bool:
        if not _eval(self.expr, task, now, self.tz):
            return False
        if task.is_waiting(now) and not self.has_explicit_status_filter() \
                and not self.has_identity_selector():
            return False
        return True

    def matches_without_waiting_guard(self, task: Task, now: datetime) -> bool:
        return _eval(self.expr, task, now, self.tz)

    def has_explicit_status_filter(self) -> bool:
        return _any_pred(self.expr, lambda p: p.kind in Pred.STATUS_KINDS)

    def has_identity_selector(self) -> bool:
        return _any_pred(self.expr, lambda p: p.kind in Pred.IDENTITY_KINDS)

    def __repr__(self) -> str:
        return f"Filter({self.expr!r})"
