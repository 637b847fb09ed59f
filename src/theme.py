"""Color & style helpers for report output.

Decisions:
- Truecolor preferred; falls back to 256-color cube if unsupported.
- Disabled when the output stream is not a TTY unless FORCE_COLOR=1.
- Honors NO_COLOR for complete disable; the ``color`` rc setting can also
  switch it off via ``configure``.
- Palette overrides come from the environment or a ``settings.env`` sidecar.
"""
from __future__ import annotations
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Mapping, Optional, TextIO

logger = logging.getLogger(__name__)

_COLORTERM = os.environ.get("COLORTERM", "").lower()
_USE_TRUECOLOR = any(tok in _COLORTERM for tok in ("truecolor", "24bit"))


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in {"1", "true", "yes", "on"}


def detect(stream: Optional[TextIO] = None) -> bool:
    """Whether ``stream`` (default stdout) should receive ANSI styling."""
    if os.environ.get("NO_COLOR") is not None:
        return False
    stream = stream or sys.stdout
    isatty = getattr(stream, "isatty", None)
    return _env_flag("FORCE_COLOR") or bool(isatty and isatty())


_state = {"enabled": detect()}


def enabled() -> bool:
    return _state["enabled"]


def set_enabled(flag: bool) -> None:
    _state["enabled"] = bool(flag)


def configure(wanted: bool, stream: Optional[TextIO] = None) -> None:
    """Apply the ``color`` setting; styling still needs a capable stream."""
    set_enabled(wanted and detect(stream))
    logger.debug("color output %s", "on" if _state["enabled"] else "off")


def _code(part: str) -> str:
    return f"\033[{part}m"


def _hex_to_rgb(hex_code: str) -> tuple[int, int, int]:
    h = hex_code.lstrip('#')
    return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)


def _fg_256(r: int, g: int, b: int) -> str:
    """Approximate RGB to xterm 256-color cube."""
    def to_6(x: int) -> int:
        return int(round(x / 255 * 5))
    idx = 16 + 36 * to_6(r) + 6 * to_6(g) + to_6(b)
    return f"\033[38;5;{idx}m"


def _from_hex(hex_code: str) -> str:
    r, g, b = _hex_to_rgb(hex_code)
    if _USE_TRUECOLOR:
        return f"\033[38;2;{r};{g};{b}m"
    return _fg_256(r, g, b)


RESET = _code('0')
BOLD = _code('1')
DIM = _code('2')
UNDERLINE = _code('4')

PALETTE_DEFAULTS: Dict[str, str] = {
    "TASKTRAIL_PRIMARY": "#476EAE",
    "TASKTRAIL_PENDING": "#48B3AF",
    "TASKTRAIL_WAITING": "#8A8FA3",
    "TASKTRAIL_ACTIVE": "#F6FF99",
    "TASKTRAIL_COMPLETED": "#A7E399",
    "TASKTRAIL_DELETED": "#D9534F",
}


def _valid_hex(value: str) -> Optional[str]:
    h = value.strip().lstrip('#')
    if len(h) == 6 and all(c in '0123456789abcdefABCDEF' for c in h):
        return '#' + h
    return None


def load_palette(environ: Mapping[str, str], sidecar: Optional[Path] = None) -> Dict[str, str]:
    """Resolve hex values: real env var > sidecar entry > default."""
    from settings import read_sidecar

    overrides = read_sidecar(sidecar) if sidecar is not None else {}
    palette: Dict[str, str] = {}
    for key, default in PALETTE_DEFAULTS.items():
        chosen = default
        for source in (overrides.get(key), environ.get(key)):
            if source and _valid_hex(source):
                chosen = _valid_hex(source)  # type: ignore[assignment]
            elif source:
                logger.debug("ignoring invalid color %s=%r", key, source)
        palette[key] = chosen
    return palette


STATUS_COLOR: Dict[str, str] = {}
HEADER_COLOR = ''
EMPTY_COLOR = ''
ACTIVE_COLOR = ''


def apply_palette(palette: Mapping[str, str]) -> None:
    global HEADER_COLOR, EMPTY_COLOR, ACTIVE_COLOR
    primary = _from_hex(palette["TASKTRAIL_PRIMARY"])
    STATUS_COLOR.clear()
    STATUS_COLOR.update({
        "pending": _from_hex(palette["TASKTRAIL_PENDING"]),
        "waiting": _from_hex(palette["TASKTRAIL_WAITING"]),
        "completed": _from_hex(palette["TASKTRAIL_COMPLETED"]),
        "deleted": _from_hex(palette["TASKTRAIL_DELETED"]),
    })
    ACTIVE_COLOR = _from_hex(palette["TASKTRAIL_ACTIVE"]) + BOLD
    HEADER_COLOR = primary
    EMPTY_COLOR = DIM + primary


apply_palette(load_palette(os.environ))


def color(text: str, *styles: str) -> str:
    """Apply ANSI styles to a given text."""
    if not _state["enabled"] or not styles:
        return text
    return ''.join(styles) + text + RESET


__all__ = [
    'color', 'configure', 'detect', 'enabled', 'set_enabled', 'load_palette', 'apply_palette',
    'RESET', 'BOLD', 'DIM', 'UNDERLINE', 'STATUS_COLOR', 'HEADER_COLOR',
    'EMPTY_COLOR', 'ACTIVE_COLOR',
]
