"""Configuration lookup, data directory and project timezone resolution.

The rc file is a plain ``key=value`` list with ``#`` comments and
``include PATH`` lines. Values are kept as strings; typed accessors
interpret them at the call site.

Decisions:
- Timezone priority: TASKTRAIL_TIMEZONE env var > sidecar ``settings.env``
  ``timezone`` key > built-in default; an unknown zone falls through, and
  UTC is used silently when nothing resolves.
- The timezone is computed once per process and never changes afterwards;
  every consumer also accepts an explicit tz for tests.
"""
from __future__ import annotations
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from errors import ConfigError

logger = logging.getLogger(__name__)

RC_ENV = "TASKTRAILRC"
TIMEZONE_ENV = "TASKTRAIL_TIMEZONE"
DEFAULT_RC_PATH = Path("~/.tasktrailrc")
DEFAULT_DATA_DIR = "~/.tasktrail"
SIDECAR_PATH = Path(DEFAULT_DATA_DIR) / "settings.env"
DEFAULT_TIMEZONE = "America/New_York"

TRUTHY = {"1", "y", "yes", "on", "true"}

DEFAULTS: Dict[str, str] = {
    "data.location": DEFAULT_DATA_DIR,
    "default.command": "next",
    "color": "on",
    "hooks": "on",
    "undo.limit": "0",
    "export.format": "json",
    "report.next.columns": "id,start,due,project,tags,description,urgency",
    "report.next.labels": "ID,Active,Due,Project,Tags,Description,Urg",
    "report.next.sort": "urgency-",
    "report.next.filter": "status:pending",
    "report.list.columns": "id,priority,due,project,tags,description",
    "report.list.sort": "due+,id",
    "report.list.filter": "status:pending",
    "report.waiting.columns": "id,wait,due,project,description",
    "report.waiting.sort": "wait+",
    "report.waiting.filter": "status:waiting",
    "report.completed.columns": "uuid,end,project,tags,description",
    "report.completed.sort": "end-",
    "report.completed.filter": "status:completed",
    "report.all.columns": "id,status,uuid,project,description",
    "report.all.sort": "entry+",
}


def parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUTHY


def expand_path(raw: str | os.PathLike) -> Path:
    return Path(os.path.expanduser(str(raw)))


class Config:
    """String-keyed settings: built-in defaults, then rc files, then overrides."""

    def __init__(self, values: Optional[Mapping[str, str]] = None, use_defaults: bool = True):
        self._map: Dict[str, str] = dict(DEFAULTS) if use_defaults else {}
        if values:
            self._map.update(values)
        self.loaded_files: list[Path] = []

    # -------------------- loading --------------------
    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> "Config":
        cfg = cls()
        rc = resolve_rc_path(path, os.environ if environ is None else environ)
        if rc is None:
            logger.debug("no rc file found; using defaults")
        else:
            logger.info("loading rc file %s", rc)
            cfg.load_file(rc)
        return cfg

    def load_file(self, path: Path) -> None:
        path = expand_path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"failed to read rc file: {exc.strerror}", path=path) from exc
        self.loaded_files.append(path)
        for line_num, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.split('#', 1)[0].strip()
            if not line:
                continue
            if line.startswith("include "):
                include = line[len("include "):].strip()
                if not include:
                    raise ConfigError("include path cannot be empty", file=path, line=line_num)
                target = expand_path(include)
                if not target.is_absolute():
                    target = path.parent / target
                if target.exists():
                    self.load_file(target)
                else:
                    logger.warning("include file %s does not exist; skipping", target)
                continue
            if '=' not in line:
                raise ConfigError(f"invalid config line: {raw_line!r}", file=path, line=line_num)
            key, value = line.split('=', 1)
            self._map[key.strip()] = value.strip()

    def apply_overrides(self, overrides: Iterable[Tuple[str, str]]) -> None:
        for key, value in overrides:
            if key.startswith("rc."):
                key = key[3:]
            logger.debug("config override %s=%s", key, value)
            self._map[key] = value

    # -------------------- lookup --------------------
    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._map.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._map.get(key)
        return default if value is None else parse_bool(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._map.get(key)
        if value is None:
            return default
        try:
            return int(value.strip())
        except ValueError:
            raise ConfigError(f"expected an integer for {key}, got {value!r}") from None

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(sorted(self._map.items()))

    def keys_with_prefix(self, prefix: str) -> Dict[str, str]:
        return {k[len(prefix):]: v for k, v in self._map.items() if k.startswith(prefix)}

    def __contains__(self, key: str) -> bool:
        return key in self._map


def resolve_rc_path(override: Optional[Path], environ: Mapping[str, str]) -> Optional[Path]:
    if override is not None:
        return Path(override)
    from_env = environ.get(RC_ENV)
    if from_env:
        return None if from_env == os.devnull else Path(from_env)
    candidate = expand_path(DEFAULT_RC_PATH)
    return candidate if candidate.exists() else None


def resolve_data_dir(config: Config, override: Optional[Path] = None) -> Path:
    directory = expand_path(override) if override else expand_path(config.get("data.location", DEFAULT_DATA_DIR))
    if not directory.exists():
        logger.info("creating data directory %s", directory)
        directory.mkdir(parents=True, exist_ok=True)
    return directory


# -------------------- project timezone --------------------
def read_sidecar(path: Path) -> Dict[str, str]:
    """Parse a ``key=value`` sidecar file; unreadable files yield nothing."""
    values: Dict[str, str] = {}
    try:
        text = expand_path(path).read_text(encoding="utf-8")
    except OSError:
        return values
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        values[key.strip()] = value.strip().strip('"\'')
    return values


def _zone(name: Optional[str]) -> Optional[ZoneInfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("ignoring unknown timezone %r", name)
        return None


def resolve_timezone(environ: Mapping[str, str], sidecar: Optional[Path] = SIDECAR_PATH,
                     default: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    candidates = [
        environ.get(TIMEZONE_ENV),
        read_sidecar(sidecar).get("timezone") if sidecar is not None else None,
        default,
    ]
    for name in candidates:
        zone = _zone(name)
        if zone is not None:
            return zone
    return ZoneInfo("UTC")


@lru_cache(maxsize=1)
def project_timezone() -> ZoneInfo:
    zone = resolve_timezone(os.environ)
    logger.debug("project timezone resolved to %s", zone.key)
    return zone
