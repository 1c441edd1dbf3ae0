"""Structured editing of Kconfig-style ``.config`` files.

A ``.config`` is an ordered list of lines. Three shapes matter:

- ``CONFIG_FOO=value``        an enabled option
- ``# CONFIG_FOO is not set`` a disabled option
- anything else              comments/blank lines, kept verbatim

``KernelConfig`` parses the file once, edits lines in place and serializes
back to the same line format. Lines that are never touched are written back
byte-for-byte.

Invariant: after ``set`` or ``clear`` the key appears on at most one line.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

KEY_PREFIX = "CONFIG_"

_ENABLED_RE = re.compile(r"^(CONFIG_[A-Za-z0-9_]+)=(.*)$")
_DISABLED_RE = re.compile(r"^# (CONFIG_[A-Za-z0-9_]+) is not set$")


def normalize_key(key: str) -> str:
    """FOO -> CONFIG_FOO; already-prefixed keys pass through."""

    key = key.strip()
    if not key:
        raise ValueError("config key must not be empty")
    if key.startswith(KEY_PREFIX):
        return key
    return KEY_PREFIX + key


@dataclass(frozen=True)
class ConfigLine:
    raw: str
    key: Optional[str] = None
    value: Optional[str] = None  # None for disabled markers and plain text

    @classmethod
    def parse(cls, raw: str) -> "ConfigLine":
        m = _ENABLED_RE.match(raw)
        if m:
            return cls(raw=raw, key=m.group(1), value=m.group(2))
        m = _DISABLED_RE.match(raw)
        if m:
            return cls(raw=raw, key=m.group(1))
        return cls(raw=raw)

    @classmethod
    def option(cls, key: str, value: str) -> "ConfigLine":
        return cls(raw=f"{key}={value}", key=key, value=value)

    @classmethod
    def not_set(cls, key: str) -> "ConfigLine":
        return cls(raw=f"# {key} is not set", key=key)


class KernelConfig:
    """Ordered key/value view over a ``.config`` file."""

    def __init__(self, lines: Iterable[ConfigLine] = (), *, trailing_newline: bool = True) -> None:
        self._lines: List[ConfigLine] = list(lines)
        self._trailing_newline = trailing_newline

    @classmethod
    def parse(cls, text: str) -> "KernelConfig":
        if not text:
            return cls()
        trailing = text.endswith("\n")
        body = text[:-1] if trailing else text
        return cls((ConfigLine.parse(raw) for raw in body.split("\n")), trailing_newline=trailing)

    @classmethod
    def load(cls, path: str | Path) -> "KernelConfig":
        return cls.parse(Path(path).read_text(encoding="utf-8"))

    def dumps(self) -> str:
        if not self._lines:
            return ""
        text = "\n".join(line.raw for line in self._lines)
        return text + "\n" if self._trailing_newline else text

    def save(self, path: str | Path) -> None:
        Path(path).write_text(self.dumps(), encoding="utf-8")

    def get(self, key: str) -> Optional[str]:
        """Value of an enabled option, None when disabled or absent."""

        key = normalize_key(key)
        for line in self._lines:
            if line.key == key:
                return line.value
        return None

    def set(self, key: str, value: str = "y") -> None:
        key = normalize_key(key)
        self._replace(key, ConfigLine.option(key, value))

    def clear(self, key: str) -> None:
        key = normalize_key(key)
        self._replace(key, ConfigLine.not_set(key))

    def _replace(self, key: str, new: ConfigLine) -> None:
        out: List[ConfigLine] = []
        placed = False
        for line in self._lines:
            if line.key != key:
                out.append(line)
            elif not placed:
                out.append(new)
                placed = True
            # later duplicates of the key are dropped
        if not placed:
            out.append(new)
        self._lines = out


def set_option(path: str | Path, key: str, value: str = "y") -> None:
    """Set key=value in the config file at path (append if missing)."""

    cfg = KernelConfig.load(path)
    cfg.set(key, value)
    cfg.save(path)
    logger.info("config %s: %s=%s", str(path), normalize_key(key), value)


def clear_option(path: str | Path, key: str) -> None:
    """Mark key as '# KEY is not set' in the config file at path."""

    cfg = KernelConfig.load(path)
    cfg.clear(key)
    cfg.save(path)
    logger.info("config %s: %s cleared", str(path), normalize_key(key))


def plan_options(
    set_opts: Mapping[str, object] | None = None,
    clear_opts: Iterable[str] = (),
) -> List[Tuple[str, Optional[str]]]:
    """Validate a batch of edits and return it as (CONFIG_KEY, value) pairs.

    A value of None marks the key as not set. Set edits come first, in
    mapping order, followed by the clears.
    """

    edits = [(normalize_key(key), _kconfig_value(key, value)) for key, value in (set_opts or {}).items()]
    edits += [(normalize_key(key), None) for key in clear_opts]
    return edits


def apply_options(
    path: str | Path,
    *,
    set_opts: Mapping[str, object] | None = None,
    clear_opts: Iterable[str] = (),
) -> KernelConfig:
    """Apply a batch of set/clear edits in a single read-modify-write.

    Every value is checked before the file is read, so a bad value leaves the
    file untouched.
    """

    edits = plan_options(set_opts, clear_opts)
    cfg = KernelConfig.load(path)
    changed = []
    for key, value in edits:
        before = cfg.get(key)
        if value is None:
            cfg.clear(key)
        else:
            cfg.set(key, value)
        if before != value:
            changed.append(key)
    cfg.save(path)
    logger.info("config %s: %d edits, changed=%s", str(path), len(edits), changed)
    return cfg


def _kconfig_value(key: str, value: object) -> Optional[str]:
    """Kconfig text for a configured value; None means clear the option.

    YAML turns `yes`/`true` into booleans, which map to y and clear. Any other
    non-string scalar is rejected: `0x80000000` arrives as an int and `~` as
    None, and neither can be written back as the text the user meant.
    """

    if value is True:
        return "y"
    if value is False:
        return None
    if isinstance(value, str):
        return value
    raise ValueError(
        f"option {normalize_key(key)}: unsupported value {value!r} ({type(value).__name__}); "
        "quote it in the YAML file, e.g. \"0x80000000\""
    )
