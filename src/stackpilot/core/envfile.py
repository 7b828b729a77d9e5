"""
Environment-file loading and writing.

Stacks are configured by a flat ``KEY=value`` file next to their
compose descriptor. The effective mapping is the parsed file overlaid
by the real process environment (real environment variables always
win).

All parsing is pure-Python (no ``python-dotenv`` dependency).

Tags:
    configuration, env-files, loader
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

from stackpilot.core.errors import ConfigError

_VAR_RE = re.compile(
    r"""
    ^                         # start of line
    \s*                       # optional leading whitespace
    (?:export\s+)?            # optional "export " prefix
    (?P<key>[A-Za-z_]\w*)     # variable name
    \s*=\s*                   # equals with optional whitespace
    (?P<value>.*)             # everything after =
    $                         # end of line
    """,
    re.VERBOSE,
)

_NEEDS_QUOTES_RE = re.compile(r"[\s#'\"]")


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a single ``.env`` file into a ``{key: value}`` mapping.

    Handles:
    * blank/comment lines
    * ``export VAR=value``
    * quoted values (single or double)
    * inline ``# comments`` outside of quotes

    Raises:
        ConfigError: the file is unreadable or not valid UTF-8.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        reason = f"not valid UTF-8 (byte {exc.start})"
        raise ConfigError(f"Cannot read {path.name}: {reason}", malformed={path.name: reason}, cause=exc) from exc
    except OSError as exc:
        reason = exc.strerror or str(exc)
        raise ConfigError(f"Cannot read {path.name}: {reason}", malformed={path.name: reason}, cause=exc) from exc

    result: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = _VAR_RE.match(line)
        if match is None:
            continue
        key = match.group("key")
        value = match.group("value").strip()

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        elif " #" in value:
            value = value[: value.index(" #")].rstrip()

        result[key] = value
    return result


def format_env_value(value: str) -> str:
    """Quote *value* when it would not survive a round trip unquoted."""
    if value == "" or _NEEDS_QUOTES_RE.search(value):
        quote = "'" if '"' in value and "'" not in value else '"'
        return f"{quote}{value}{quote}"
    return value


def render_env(sections: Mapping[str, Mapping[str, str]]) -> str:
    """Render ``{section title: {key: value}}`` as env file text."""
    blocks = []
    for title, values in sections.items():
        lines = [f"# {title}"] if title else []
        lines.extend(f"{key}={format_env_value(value)}" for key, value in values.items())
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def write_env_file(path: Path, sections: Mapping[str, Mapping[str, str]]) -> Path:
    """Write env sections to *path*. File mode is 0600."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_env(sections), encoding="utf-8")
    path.chmod(0o600)
    return path
