"""Hook scripts: user executables run at launch, add and modify events.

Scripts live in ``DATA_DIR/hooks`` and are selected by filename prefix
(``on-launch.*``, ``on-add.*``, ``on-modify.*``). They run in filename order
and each one receives the previous script's output, so the list is a
pipeline. Tasks cross the process boundary as single JSON lines with the
``id`` removed; stderr is only ever logged.
"""
from __future__ import annotations
import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from errors import HookError, HookExitError, HookOutputError, TaskTrailError
from models import Task, task_from_json, task_to_json
from settings import Config

logger = logging.getLogger(__name__)

ON_LAUNCH = "on-launch"
ON_ADD = "on-add"
ON_MODIFY = "on-modify"


class HookRunner:
    def __init__(self, hooks_dir: Path, enabled: bool = True):
        self.hooks_dir = Path(hooks_dir)
        self.enabled = enabled
        logger.debug("hook runner enabled=%s dir=%s", enabled, self.hooks_dir)

    @classmethod
    def from_config(cls, config: Config, data_dir: Path) -> "HookRunner":
        return cls(Path(data_dir) / "hooks", enabled=config.get_bool("hooks", True))

    # -------------------- events --------------------
    def run_on_launch(self) -> None:
        if not self.enabled:
            logger.debug("hooks disabled; skipping %s", ON_LAUNCH)
            return
        for script in self.list_scripts(ON_LAUNCH):
            _run(script, [], expected_lines=None)

    def apply_on_add(self, task: Task) -> Task:
        if not self.enabled:
            logger.debug("hooks disabled; skipping %s", ON_ADD)
            return task
        current = task
        for script in self.list_scripts(ON_ADD):
            lines = _run(script, [task_to_json(current, strip_id=True)], expected_lines=1)
            current = _decode_response(script, lines[0], current)
        return current

    def apply_on_modify(self, old: Task, new: Task) -> Task:
        if not self.enabled:
            logger.debug("hooks disabled; skipping %s", ON_MODIFY)
            return new
        old_line = task_to_json(old, strip_id=True)
        current = new
        for script in self.list_scripts(ON_MODIFY):
            lines = _run(script, [old_line, task_to_json(current, strip_id=True)], expected_lines=1)
            current = _decode_response(script, lines[0], current)
        return current

    # -------------------- discovery --------------------
    def list_scripts(self, event: str) -> List[Path]:
        if not self.hooks_dir.is_dir():
            return []
        prefix = f"{event}."
        scripts: List[Path] = []
        try:
            entries = list(self.hooks_dir.iterdir())
        except OSError as exc:
            raise HookError(f"failed to read hooks directory: {exc.strerror}", path=self.hooks_dir) from exc
        for path in entries:
            if not path.name.startswith(prefix) or not path.is_file():
                continue
            if not is_executable(path):
                logger.debug("skipping non-executable hook %s", path)
                continue
            scripts.append(path)
        scripts.sort(key=lambda p: p.name)
        logger.debug("%d %s hook(s) selected", len(scripts), event)
        return scripts


def is_executable(path: Path) -> bool:
    if os.name == "nt":
        return path.is_file()
    return os.access(path, os.X_OK)


def _run(script: Path, input_lines: Sequence[str], expected_lines: Optional[int]) -> List[str]:
    """Run one script to completion; blocks until it exits."""
    logger.info("running hook %s", script.name)
    payload = ''.join(line + '\n' for line in input_lines).encode("utf-8") if input_lines else None
    try:
        proc = subprocess.run(
            [str(script)],
            input=payload,
            stdin=subprocess.DEVNULL if payload is None else None,
            capture_output=True,
            cwd=str(script.parent.parent),
        )
    except OSError as exc:
        raise HookError(f"failed to run hook: {exc.strerror or exc}", script=script.name) from exc

    # stderr is diagnostic text only
    stderr = (proc.stderr or b'').decode("utf-8", errors="replace").strip()
    if stderr:
        logger.warning("hook %s wrote to stderr: %s", script.name, stderr)
    if proc.returncode != 0:
        raise HookExitError(f"hook script {script.name} failed with status {proc.returncode}",
                            script=script.name, status=proc.returncode)
    try:
        stdout = (proc.stdout or b'').decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HookOutputError(f"hook {script.name} emitted output that is not valid UTF-8",
                              script=script.name) from exc
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    if expected_lines is not None and len(lines) != expected_lines:
        raise HookOutputError(
            f"expected {expected_lines} JSON task(s), found {len(lines)}, in hook script {script.name}",
            script=script.name, expected=expected_lines, actual=len(lines))
    return lines


def _decode_response(script: Path, line: str, before: Task) -> Task:
    try:
        updated = task_from_json(line)
    except TaskTrailError as exc:
        raise HookOutputError(f"hook {script.name} emitted invalid task JSON: {exc}",
                              script=script.name) from exc
    if updated.id is None:
        updated.id = before.id
    return updated
