"""Command-line interface for tasktrail.

Invocation grammar: ``tasktrail [OPTIONS] [FILTER...] [COMMAND [ARGS...]]``.
The first token naming a command (or a configured report) splits the line;
tokens before it are filter terms, tokens after it are the command's
arguments. ``rc.KEY=VALUE`` tokens anywhere before ``--`` override config.
"""
from __future__ import annotations
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import click

import theme
from engine import TaskEngine, known_commands
from errors import ParseError, TaskTrailError
from hooks import HookRunner
from logging_setup import setup_logging
from render import render_info, render_table
from settings import Config, resolve_data_dir
from storage import TaskStore

logger = logging.getLogger(__name__)

# commands that take arguments rather than only filter terms
ARG_COMMANDS = ("add", "log", "modify", "append", "prepend", "annotate", "denotate", "context")
ABBREVIATION_MINIMUM = 3


@dataclass
class Invocation:
    command: str
    filter_terms: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)
    overrides: List[Tuple[str, str]] = field(default_factory=list)


def split_override(token: str) -> Optional[Tuple[str, str]]:
    if not token.startswith("rc.") or len(token) <= 3:
        return None
    sep = min((i for i in (token.find('='), token.find(':')) if i > 3), default=-1)
    if sep < 0:
        return None
    return token[:sep], token[sep + 1:]


def resolve_command(token: str, commands: Sequence[str], minimum: int = ABBREVIATION_MINIMUM) -> Optional[str]:
    """Exact name, or an unambiguous prefix of one at least ``minimum`` letters long."""
    word = token.lower()
    if word in commands:
        return word
    if len(word) < minimum or not word.isalpha():
        return None
    matches = [c for c in commands if c.startswith(word)]
    return matches[0] if len(matches) == 1 else None


def parse_invocation(tokens: Sequence[str], config: Config) -> Invocation:
    """Split a token list; overrides are applied to ``config`` in place."""
    overrides: List[Tuple[str, str]] = []
    rest: List[str] = []
    literal = False
    for token in tokens:
        if token == "--":
            literal = True
        override = None if literal else split_override(token)
        if override is None:
            rest.append(token)
        else:
            overrides.append(override)
    config.apply_overrides(overrides)

    commands = known_commands(config)
    minimum = max(1, config.get_int("abbreviation.minimum", ABBREVIATION_MINIMUM))
    for idx, token in enumerate(rest):
        if token == "--":
            break
        command = resolve_command(token, commands, minimum)
        if command is not None:
            return Invocation(command, rest[:idx], rest[idx + 1:], overrides)
    default = config.get("default.command") or "next"
    return Invocation(default, rest, [], overrides)


def build_engine(config: Config, data: Optional[Path]) -> TaskEngine:
    data_dir = resolve_data_dir(config, data)
    store = TaskStore.open(data_dir, undo_limit=config.get_int("undo.limit", 0))
    hooks = HookRunner.from_config(config, data_dir)
    return TaskEngine(store, config, hooks)


def dispatch(engine: TaskEngine, inv: Invocation) -> None:
    cmd, terms, args = inv.command, inv.filter_terms, inv.args
    if cmd not in ARG_COMMANDS and args:
        # trailing words after a query command are more filter terms
        terms, args = terms + args, []
    if cmd == "add":
        if terms:
            raise ParseError("add does not take filter terms")
        click.echo(engine.add(args).message)
    elif cmd == "log":
        click.echo(engine.log(terms + args).message)
    elif cmd in ("modify", "append", "prepend", "annotate", "denotate"):
        click.echo(getattr(engine, cmd)(terms, args).message)
    elif cmd in ("start", "stop", "done", "delete", "duplicate"):
        click.echo(getattr(engine, cmd)(terms).message)
    elif cmd == "undo":
        click.echo(engine.undo().message)
    elif cmd == "context":
        click.echo(engine.context(args).message)
    elif cmd == "export":
        click.echo(engine.export(terms))
    elif cmd == "import":
        click.echo(engine.import_tasks(click.get_text_stream("stdin").read()).message)
    elif cmd == "info":
        now = engine.clock()
        for idx, task in enumerate(engine.info(terms)):
            if idx:
                click.echo('')
            for line in render_info(task, now, engine.tz):
                click.echo(line)
    elif cmd == "projects":
        for name in engine.projects():
            click.echo(name)
    elif cmd == "tags":
        for name in engine.tags():
            click.echo(name)
    else:
        table = engine.report(cmd, terms)
        for line in render_table(table, engine.clock()):
            click.echo(line)


@click.command(context_settings={
    "ignore_unknown_options": True,
    "allow_interspersed_args": False,
    "help_option_names": ["-h", "--help"],
})
@click.option("--data", type=click.Path(file_okay=False, path_type=Path), envvar="TASKTRAILDATA",
              help="Data directory (default: data.location from the rc file).")
@click.option("--rc", "rc_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Configuration file (default: $TASKTRAILRC or ~/.tasktrailrc).")
@click.option("-v", "--verbose", count=True, help="More log output; repeat for debug.")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors.")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), help="Also log to this file.")
@click.argument("tokens", nargs=-1, type=click.UNPROCESSED)
def main(data: Optional[Path], rc_path: Optional[Path], verbose: int, quiet: bool,
         log_file: Optional[Path], tokens: Tuple[str, ...]) -> None:
    """Track tasks from the terminal.

    \b
    Examples:
      tasktrail add Write report project:work due:tomorrow +writing
      tasktrail project:work list
      tasktrail 3 done
      tasktrail +writing or due.before:eow next
    """
    setup_logging(-1 if quiet else verbose, log_file)
    try:
        config = Config.load(rc_path)
        inv = parse_invocation(tokens, config)
        theme.configure(config.get_bool("color", True), click.get_text_stream("stdout"))
        logger.debug("command=%s filter=%s args=%s", inv.command, inv.filter_terms, inv.args)
        engine = build_engine(config, data)
        theme.apply_palette(theme.load_palette(os.environ, engine.store.data_dir / "settings.env"))
        engine.run_on_launch()
        dispatch(engine, inv)
    except TaskTrailError as exc:
        logger.debug("command failed", exc_info=True)
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


if __name__ == '__main__':  # pragma: no cover
    main()
