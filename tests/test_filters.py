"""Tests for filter parsing and matching."""
from datetime import timedelta

import pytest

from errors import FilterParseError
from filters import Filter, Pred, lex_terms, parse_atom
from models import Status


@pytest.fixture
def tasks(make_task, now):
    return [
        make_task("Buy milk", project="home", tags=["errand"]),
        make_task("Write report", project="work", tags=["writing"], priority="H",
                  due=now + timedelta(days=2)),
        make_task("Call plumber", project="home", due=now - timedelta(days=1)),
        make_task("Review PR", project="work", tags=["writing", "review"], start=now),
    ]


def test_atom_mapping_order(now, tz):
    assert parse_atom("+home", now, tz) == Pred("tag_include", "home")
    assert parse_atom("-home", now, tz) == Pred("tag_exclude", "home")
    assert parse_atom("+OVERDUE", now, tz) == Pred("virtual_include", "OVERDUE")
    assert parse_atom("12", now, tz) == Pred("id", 12)
    assert parse_atom("0B7E8A7E-3F4C-4F36-9A43-0C8F1F8D5A11", now, tz) == \
        Pred("uuid", "0b7e8a7e-3f4c-4f36-9a43-0c8f1f8d5a11")
    assert parse_atom("project:work", now, tz) == Pred("project", "work")
    assert parse_atom("status:waiting", now, tz) == Pred("waiting")
    assert parse_atom("status:completed", now, tz) == Pred("status", Status.COMPLETED)
    assert parse_atom("due.before:+1d", now, tz) == Pred("due_before", now + timedelta(days=1))
    assert parse_atom("Milk", now, tz) == Pred("text", "Milk")


@pytest.mark.parametrize("p1,p2", [
    (["project:home"], ["+errand"]),
    (["project:work"], ["-review"]),
    (["report"], ["+writing"]),
    ([], ["project:home"]),
    (["due.before:now"], ["project:home"]),
])
def test_concatenated_filters_are_a_conjunction(tasks, now, tz, p1, p2):
    both = Filter.parse(p1 + p2, now, tz)
    first = Filter.parse(p1, now, tz)
    second = Filter.parse(p2, now, tz)
    for task in tasks:
        assert both.matches(task, now) == (first.matches(task, now) and second.matches(task, now))


def test_empty_filter_matches_everything_visible(tasks, now, tz):
    f = Filter.parse([], now, tz)
    assert all(f.matches(t, now) for t in tasks)


def test_waiting_tasks_hidden_by_default(make_task, now, tz):
    task = make_task("Renew passport", wait=now + timedelta(days=1))
    assert not Filter.parse([], now, tz).matches(task, now)
    assert Filter.parse(["status:waiting"], now, tz).matches(task, now)
    assert Filter.parse([], now, tz).matches_without_waiting_guard(task, now)
    assert not Filter.parse(["status:pending"], now, tz).matches(task, now)
    assert Filter.parse(["+WAITING"], now, tz).matches(task, now)
    assert Filter.parse([str(task.id)], now, tz).matches(task, now)


def test_due_comparisons_are_strict(make_task, now, tz):
    task = make_task("Deadline", due=now)
    assert not Filter.parse(["due.before:now"], now, tz).matches(task, now)
    assert not Filter.parse(["due.after:now"], now, tz).matches(task, now)
    assert Filter.parse(["due.before:+1m"], now, tz).matches(task, now)
    assert not Filter.parse(["due.before:+1d"], now, tz).matches(make_task("No due"), now)


def test_text_match_is_case_insensitive(tasks, now, tz):
    f = Filter.parse(["MILK"], now, tz)
    assert [t.description for t in tasks if f.matches(t, now)] == ["Buy milk"]


def test_or_and_parentheses(tasks, now, tz):
    f = Filter.parse(["+errand", "or", "+review"], now, tz)
    assert [t.description for t in tasks if f.matches(t, now)] == ["Buy milk", "Review PR"]
    f = Filter.parse(["(project:home", "||", "+writing)", "-review"], now, tz)
    assert [t.description for t in tasks if f.matches(t, now)] == \
        ["Buy milk", "Write report", "Call plumber"]
    f = Filter.parse(["project:work", "and", "+OVERDUE", "or", "+errand"], now, tz)
    assert [t.description for t in tasks if f.matches(t, now)] == ["Buy milk"]


@pytest.mark.parametrize("terms", [["(", "+a"], ["+a", ")"], ["or"], ["+a", "and"], ["()"]])
def test_malformed_expressions(now, tz, terms):
    with pytest.raises(FilterParseError):
        Filter.parse(terms, now, tz)


def test_lexer_splits_parentheses():
    assert lex_terms(["(+a", "or", "+b)"]) == ["(", "+a", "or", "+b", ")"]


def test_virtual_tags(tasks, now, tz):
    def names(term):
        f = Filter.parse([term], now, tz)
        return [t.description for t in tasks if f.matches(t, now)]

    assert names("+OVERDUE") == ["Call plumber"]
    assert names("+ACTIVE") == ["Review PR"]
    assert names("+DUE") == ["Call plumber"]
    assert names("-ACTIVE") == ["Buy milk", "Write report", "Call plumber"]
    assert names("+BLOCKED") == []


def test_today_and_tomorrow_use_project_calendar(make_task, now, tz):
    tonight = make_task("Tonight", due=now + timedelta(hours=10))  # 20:00 local
    tomorrow = make_task("Tomorrow", due=now + timedelta(hours=16))  # 02:00 local next day
    f_today = Filter.parse(["+TODAY"], now, tz)
    f_tomorrow = Filter.parse(["+TOMORROW"], now, tz)
    assert f_today.matches(tonight, now) and not f_today.matches(tomorrow, now)
    assert f_tomorrow.matches(tomorrow, now)


def test_selector_helpers(now, tz):
    assert Filter.parse(["status:completed"], now, tz).has_explicit_status_filter()
    assert Filter.parse(["+a", "or", "+DELETED"], now, tz).has_explicit_status_filter()
    assert not Filter.parse(["+a", "project:x"], now, tz).has_explicit_status_filter()
    assert Filter.parse(["3"], now, tz).has_identity_selector()
    assert not Filter.parse([], now, tz).has_identity_selector()


def test_completed_tasks_need_a_status_term(make_task, now, tz):
    task = make_task("Old")
    task.finish(Status.COMPLETED, now)
    assert Filter.parse([], now, tz).matches(task, now)
    assert Filter.parse(["status:completed"], now, tz).matches(task, now)
    assert not Filter.parse(["status:pending"], now, tz).matches(task, now)
