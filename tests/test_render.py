"""Tests for table layout, task info output and colour handling."""
import io
import logging
from datetime import timedelta

import theme
from logging_setup import level_for, setup_logging
from models import Annotation
from reports import Column, ReportSpec, ReportTable, build_report
from render import compute_widths, render_info, render_table, visible_len, wrap_cell


def test_wrap_cell():
    assert wrap_cell("short", 10) == ["short"]
    assert wrap_cell("one two three four", 9) == ["one two", "three", "four"]
    assert wrap_cell("abcdefghij klm", 4) == ["abcd", "efgh", "ij", "klm"]


def test_widths_fit_content_then_shrink_widest():
    labels = ["ID", "Description"]
    rows = [["1", "a fairly long description of the work"]]
    assert compute_widths(labels, rows, 120) == [2, 37]
    narrow = compute_widths(labels, rows, 30)
    assert narrow == [2, 26]
    assert sum(narrow) + 2 <= 30


def test_render_table_aligns_and_counts(make_task, now, tz):
    tasks = [make_task("Buy milk", project="home"), make_task("Write a much longer description", project="w")]
    spec = ReportSpec("t", [Column.ID, Column.PROJECT, Column.DESCRIPTION])
    lines = render_table(build_report(spec, tasks, now, (), tz), now, term_width=80)
    assert lines[0].split() == ["ID", "Project", "Description"]
    assert lines[1].split() == ["1", "home", "Buy", "milk"]
    assert lines[-1] == "2 tasks"
    col = lines[0].index("Description")
    assert lines[2][col:].startswith("Write a much")


def test_render_table_wraps_long_cells(make_task, now, tz):
    task = make_task("word " * 20)
    spec = ReportSpec("t", [Column.ID, Column.DESCRIPTION])
    lines = render_table(build_report(spec, [task], now, (), tz), now, term_width=30)
    body = lines[1:-2]
    assert len(body) > 1
    assert all(visible_len(line) <= 30 for line in lines)
    assert lines[-1] == "1 task"


def test_empty_table():
    table = ReportTable("t", ["ID"], [], [])
    assert render_table(table, None) == ["No matches."]


def test_colored_output_keeps_alignment(make_task, now, tz):
    theme.set_enabled(True)
    tasks = [make_task("Active one", start=now), make_task("Plain")]
    spec = ReportSpec("t", [Column.ID, Column.DESCRIPTION])
    lines = render_table(build_report(spec, tasks, now, (), tz), now, term_width=80)
    assert "\x1b[" in lines[1]
    assert visible_len(lines[0]) == len("ID  Description")
    assert visible_len(lines[1]) == len("1   Active one")


def test_render_info_lists_populated_fields(make_task, now, tz):
    task = make_task("Inspect", project="qa", tags=["a", "b"], due=now + timedelta(days=1))
    task.extra["estimate"] = "2h"
    task.annotations.append(Annotation(now, "first look"))
    text = "\n".join(render_info(task, now, tz))
    assert "Inspect" in text
    assert "qa" in text
    assert "a b" in text
    assert "2026-02-18" in text
    assert "estimate" in text and "2h" in text
    assert "2026-02-17 first look" in text
    assert "Scheduled" not in text


class _Tty(io.StringIO):
    def isatty(self):
        return True


def test_theme_detect_honours_env(monkeypatch):
    tty = _Tty()
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    assert theme.detect(tty) is True
    assert theme.detect(io.StringIO()) is False
    monkeypatch.setenv("FORCE_COLOR", "1")
    assert theme.detect(io.StringIO()) is True
    monkeypatch.setenv("NO_COLOR", "")
    assert theme.detect(tty) is False
    theme.configure(True, tty)
    assert not theme.enabled()


def test_palette_overrides(tmp_path):
    sidecar = tmp_path / "settings.env"
    sidecar.write_text("TASKTRAIL_PENDING=#112233\nTASKTRAIL_DELETED=nothex\n")
    palette = theme.load_palette({"TASKTRAIL_PRIMARY": "abcdef"}, sidecar)
    assert palette["TASKTRAIL_PENDING"] == "#112233"
    assert palette["TASKTRAIL_PRIMARY"] == "#abcdef"
    assert palette["TASKTRAIL_DELETED"] == theme.PALETTE_DEFAULTS["TASKTRAIL_DELETED"]


def test_logging_levels(tmp_path):
    assert level_for(-1) == logging.ERROR
    assert level_for(0) == logging.WARNING
    assert level_for(1) == logging.INFO
    assert level_for(3) == logging.DEBUG

    log_file = tmp_path / "logs" / "tasktrail.log"
    setup_logging(1, log_file)
    logging.getLogger("engine").debug("file only")
    logging.getLogger("engine").info("both")
    for handler in logging.getLogger().handlers:
        handler.flush()
    content = log_file.read_text()
    assert "file only" in content and "both" in content
