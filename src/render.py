"""Terminal rendering for report tables and single-task details.

Columns are sized to their widest cell; when the table is wider than the
terminal the widest column gives up space one character at a time and its
cells wrap on word boundaries. Rows are colored by presented status.
"""
from __future__ import annotations
import re
import shutil
from datetime import datetime, tzinfo
from typing import List, Optional, Sequence

import theme
from dates import format_project_date
from models import Task
from reports import ReportTable, urgency
from theme import BOLD, color

MIN_COL_WIDTH = 4
SEP = "  "
ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def visible_len(s: str) -> int:
    return len(ANSI_RE.sub('', s))


def terminal_width() -> int:
    return shutil.get_terminal_size((120, 30)).columns


# ---- width calculation ----
def compute_widths(labels: Sequence[str], rows: Sequence[Sequence[str]], term_width: int) -> List[int]:
    widths = [len(label) for label in labels]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    sep_total = len(SEP) * max(len(widths) - 1, 0)
    floor = [max(MIN_COL_WIDTH, min(len(label), w)) for label, w in zip(labels, widths)]
    target_space = max(term_width - sep_total, sum(floor))
    while sum(widths) > target_space:
        widest = max(range(len(widths)), key=lambda i: widths[i] - floor[i])
        if widths[widest] <= floor[widest]:
            break
        widths[widest] -= 1
    return widths


# ---- wrapping ----
def wrap_cell(text: str, width: int) -> List[str]:
    if len(text) <= width:
        return [text]
    lines: List[str] = []
    current = ''
    for word in text.split():
        while len(word) > width:
            if current:
                lines.append(current)
                current = ''
            lines.append(word[:width])
            word = word[width:]
        candidate = word if not current else current + ' ' + word
        if len(candidate) <= width:
            current = candidate
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines or ['']


def _row_style(task: Task, now: datetime) -> str:
    if task.is_active and not task.is_terminal:
        return theme.ACTIVE_COLOR
    return theme.STATUS_COLOR.get(task.display_status(now), '')


# ---- rendering ----
def render_table(table: ReportTable, now: datetime, term_width: Optional[int] = None) -> List[str]:
    if not table.rows:
        return [color("No matches.", theme.EMPTY_COLOR)]
    widths = compute_widths(table.labels, table.rows, term_width or terminal_width())

    header_cells = []
    for label, width in zip(table.labels, widths):
        cell = label[:width]
        header_cells.append(color(cell, theme.HEADER_COLOR, BOLD, theme.UNDERLINE) + ' ' * (width - len(cell)))
    out = [SEP.join(header_cells).rstrip()]

    for task, row in zip(table.tasks, table.rows):
        style = _row_style(task, now)
        wrapped = [wrap_cell(cell, width) for cell, width in zip(row, widths)]
        for r in range(max(len(w) for w in wrapped)):
            cells = []
            for col_lines, width in zip(wrapped, widths):
                line = col_lines[r] if r < len(col_lines) else ''
                pad = ' ' * (width - visible_len(line))
                cells.append(color(line, style) + pad if line else pad)
            out.append(SEP.join(cells).rstrip())

    count = len(table.rows)
    out.append('')
    out.append(f"{count} task" + ("" if count == 1 else "s"))
    return out


def render_info(task: Task, now: datetime, tz: Optional[tzinfo] = None) -> List[str]:
    """Two-column name/value listing of every populated field."""
    pairs = [
        ("ID", str(task.id) if task.id is not None else '-'),
        ("UUID", task.uuid),
        ("Description", task.description),
        ("Status", task.display_status(now)),
        ("Project", task.project or ''),
        ("Priority", task.priority or ''),
        ("Tags", ' '.join(task.tags)),
        ("Entered", format_project_date(task.entry, tz)),
        ("Modified", format_project_date(task.modified, tz)),
        ("Start", format_project_date(task.start, tz)),
        ("End", format_project_date(task.end, tz)),
        ("Due", format_project_date(task.due, tz)),
        ("Scheduled", format_project_date(task.scheduled, tz)),
        ("Wait", format_project_date(task.wait, tz)),
        ("Depends", ' '.join(task.depends)),
        ("Urgency", f"{urgency(task, now):.3f}"),
    ]
    for key in sorted(task.extra):
        pairs.append((key, str(task.extra[key])))
    pairs = [(name, value) for name, value in pairs if value]
    width = max(len(name) for name, _ in pairs)
    out = [color(name.ljust(width), theme.HEADER_COLOR, BOLD) + SEP + value for name, value in pairs]
    for ann in task.annotations:
        stamp = format_project_date(ann.entry, tz)
        out.append(color("Annotation".ljust(width), theme.HEADER_COLOR) + SEP + f"{stamp} {ann.description}")
    return out
