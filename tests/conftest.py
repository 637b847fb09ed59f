"""Shared fixtures: a temporary task store, a fixed clock and hook scripts."""
import logging
import os
import sys
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import settings
import theme
from engine import TaskEngine
from hooks import HookRunner
from models import Task
from settings import Config
from storage import TaskStore

NOW = datetime(2026, 2, 17, 15, 0, 0, tzinfo=timezone.utc)  # 10:00 in New York
NEW_YORK = ZoneInfo("America/New_York")


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch):
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    monkeypatch.setenv("TASKTRAIL_TIMEZONE", "America/New_York")
    monkeypatch.setenv("TASKTRAILRC", os.devnull)
    monkeypatch.setenv("NO_COLOR", "1")
    settings.project_timezone.cache_clear()
    theme.set_enabled(False)
    yield
    settings.project_timezone.cache_clear()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def tz():
    return NEW_YORK


@pytest.fixture
def store(tmp_path):
    return TaskStore.open(tmp_path / "data")


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def engine(store, config, now, tz):
    hooks = HookRunner(store.hooks_dir, enabled=True)
    return TaskEngine(store, config, hooks, tz=tz, clock=lambda: now)


@pytest.fixture
def make_task(now):
    counter = iter(range(1, 10_000))

    def _make(description="Task", **fields):
        fields.setdefault("id", next(counter))
        task = Task.new_pending(description, now, fields.pop("id"))
        for name, value in fields.items():
            setattr(task, name, value)
        return task
    return _make


@pytest.fixture
def write_hook(store):
    """Write an executable Python hook script into the store's hooks dir."""
    if sys.platform.startswith("win"):
        pytest.skip("hook scripts need a POSIX shebang")

    def _write(name, body):
        store.hooks_dir.mkdir(parents=True, exist_ok=True)
        path = store.hooks_dir / name
        path.write_text(f"#!{sys.executable}\nimport json, sys\n" + textwrap.dedent(body))
        path.chmod(0o755)
        return path
    return _write
