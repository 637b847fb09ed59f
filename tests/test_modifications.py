"""Tests for modification tokens."""
import logging
from datetime import timedelta

import pytest

from errors import DateParseError, ParseError
from models import Status
from modifications import (Modification, apply_mods, parse_description_and_mods,
                           parse_modification, parse_mods)

DEP = "6f1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"


def test_token_kinds(now, tz):
    assert parse_modification("+home", now, tz) == Modification("tag_add", "home")
    assert parse_modification("-home", now, tz) == Modification("tag_remove", "home")
    assert parse_modification("project:work", now, tz) == Modification("project", "work")
    assert parse_modification("pri=H", now, tz) == Modification("priority", "H")
    assert parse_modification("due:+2d", now, tz) == Modification("due", now + timedelta(days=2))
    assert parse_modification(f"depends:{DEP.upper()}", now, tz) == Modification("depends", (DEP,))
    assert parse_modification("project:", now, tz) == Modification("project", None)
    assert parse_modification("milk", now, tz) is None
    assert parse_modification("10:30", now, tz) is None
    assert parse_modification("+", now, tz) is None


def test_bad_values_raise(now, tz):
    with pytest.raises(DateParseError):
        parse_modification("due:someday", now, tz)
    with pytest.raises(ParseError, match="depends"):
        parse_modification("depends:12", now, tz)


def test_description_and_mods(now, tz):
    description, mods = parse_description_and_mods(
        ["Buy", "milk", "+errand", "project:home", "at", "10:30"], now, tz)
    assert description == "Buy milk at 10:30"
    assert mods == [Modification("tag_add", "errand"), Modification("project", "home")]


def test_double_dash_makes_the_rest_literal(now, tz):
    description, mods = parse_description_and_mods(["Fix", "+bug", "--", "+literal", "due:x"], now, tz)
    assert description == "Fix +literal due:x"
    assert mods == [Modification("tag_add", "bug")]


def test_description_is_required(now, tz):
    with pytest.raises(ParseError, match="description"):
        parse_description_and_mods(["+tag", "project:x"], now, tz)


def test_unknown_modify_tokens_are_ignored_with_warning(now, tz, caplog):
    with caplog.at_level(logging.WARNING, logger="modifications"):
        mods = parse_mods(["+a", "stray"], now, tz)
    assert mods == [Modification("tag_add", "a")]
    assert "stray" in caplog.text


def test_apply_mods(make_task, now, tz):
    task = make_task("Paint fence", tags=["old"])
    apply_mods(task, parse_mods(["+new", "-old", "project:home", "pri:M", f"depends:{DEP}",
                                 f"depends:{DEP}", "due:tomorrow"], now, tz), now)
    assert task.tags == ["new"]
    assert task.project == "home"
    assert task.priority == "M"
    assert task.depends == [DEP]
    assert task.due == parse_mods(["due:tomorrow"], now, tz)[0].value

    apply_mods(task, parse_mods(["project:", "depends:", "due:"], now, tz), now)
    assert task.project is None and task.depends == [] and task.due is None


def test_task_cannot_depend_on_itself(make_task, now, tz):
    task = make_task("Self")
    apply_mods(task, [Modification("depends", (task.uuid,))], now)
    assert task.depends == []


def test_wait_toggles_pending_and_waiting(make_task, now, tz):
    task = make_task("Later")
    apply_mods(task, parse_mods(["wait:+3d"], now, tz), now)
    assert task.status == Status.WAITING
    assert task.is_waiting(now)
    apply_mods(task, parse_mods(["wait:"], now, tz), now)
    assert task.status == Status.PENDING
    assert task.wait is None
    apply_mods(task, parse_mods(["wait:-1d"], now, tz), now)
    assert task.status == Status.PENDING
