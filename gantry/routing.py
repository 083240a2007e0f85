"""Path templates such as ``/items/{item_id}`` or ``/files/{name:path}``."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Pattern

_PARAM_RE = re.compile(r"{([^}:]+)(?::([^}]+))?}")

CONVERTER_PATTERNS = {
    "str": r"[^/]+",
    "int": r"-?\d+",
    "float": r"-?\d+(?:\.\d+)?",
    "path": r".+",
}


@dataclass(frozen=True)
class PathTemplate:
    """Compiled route template; captured values stay strings."""

    template: str
    regex: Pattern[str] = field(repr=False)
    param_names: tuple[str, ...]

    def match(self, path: str) -> dict[str, str] | None:
        if not self.param_names:
            return {} if path == self.template else None
        found = self.regex.match(path)
        if found is None:
            return None
        return found.groupdict()


def compile_path(template: str) -> PathTemplate:
    """Compile *template* into a :class:`PathTemplate`.

    Raises ``ValueError`` for unknown converters or duplicate names.
    """

    names: list[str] = []
    parts: list[str] = []
    idx = 0
    for found in _PARAM_RE.finditer(template):
        name, converter = found.group(1), found.group(2) or "str"
        if converter not in CONVERTER_PATTERNS:
            raise ValueError(f"unknown path converter {converter!r} in {template!r}")
        if name in names:
            raise ValueError(f"duplicate path parameter {name!r} in {template!r}")
        names.append(name)
        parts.append(re.escape(template[idx : found.start()]))
        parts.append(f"(?P<{name}>{CONVERTER_PATTERNS[converter]})")
        idx = found.end()
    parts.append(re.escape(template[idx:]))
    return PathTemplate(template, re.compile("^" + "".join(parts) + "$"), tuple(names))


def join_paths(prefix: str, path: str) -> str:
    """Join a group *prefix* and a route *path* with exactly one slash."""

    prefix = prefix.rstrip("/")
    if not path.startswith("/"):
        path = "/" + path
    if path == "/" and prefix:
        return prefix
    return prefix + path


__all__ = ["CONVERTER_PATTERNS", "PathTemplate", "compile_path", "join_paths"]
