"""Exclusion glob matching.

Patterns use shell-glob syntax over forward-slash relative paths:

* ``*`` and ``?`` never cross a ``/``
* ``**`` spans any number of segments (``**/`` may match nothing)
* a trailing ``/**`` matches the directory itself and its whole subtree
* ``[abc]`` / ``[!abc]`` character classes

A pattern whose body (ignoring a trailing ``/**``) has no ``/`` is tested
against every single segment of the path, so ``*.log``, ``.DS_Store`` and
``node_modules/**`` apply at any depth. A pattern with an inner ``/`` or a
leading ``/`` is anchored at the collection root (``/dist/**`` only excludes
the top-level ``dist``).
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache

from sitesnap.utils.paths import to_posix


@dataclass(frozen=True)
class CompiledPattern:
    source: str
    regex: re.Pattern[str]
    anchored: bool

    def matches(self, relative_path: str) -> bool:
        if not relative_path:
            return False
        if self.anchored:
            return self.regex.fullmatch(relative_path) is not None
        return any(
            self.regex.fullmatch(segment) for segment in relative_path.split("/")
        )


def _translate(body: str) -> str:
    out: list[str] = []
    i, n = 0, len(body)
    while i < n:
        c = body[i]
        if body.startswith("**", i):
            if body.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
            else:
                out.append(".*")
                i += 2
        elif c == "*":
            out.append("[^/]*")
            i += 1
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            end = body.find("]", i + 2)
            if end == -1:
                out.append(re.escape(c))
                i += 1
                continue
            members = body[i + 1 : end].replace("\\", "\\\\")
            if members.startswith("!"):
                members = "^" + members[1:]
            out.append(f"[{members}]")
            i = end + 1
        else:
            out.append(re.escape(c))
            i += 1
    return "".join(out)


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> CompiledPattern:
    """Compile one glob into a matcher"""
    text = pattern.strip().replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    rooted = text.startswith("/")
    text = text.strip("/") or "**"
    if text == "**":
        return CompiledPattern(pattern, re.compile(".*", re.DOTALL), True)

    subtree = ""
    if text.endswith("/**"):
        text = text[:-3]
        subtree = "(?:/.*)?"

    if rooted or "/" in text:
        regex = re.compile(_translate(text) + subtree, re.DOTALL)
        return CompiledPattern(pattern, regex, True)
    # a matched segment excludes everything below it, so the subtree suffix is implied
    return CompiledPattern(pattern, re.compile(_translate(text), re.DOTALL), False)


class PatternMatcher:
    """Decides whether a relative path is excluded by any pattern"""

    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = tuple(dict.fromkeys(p for p in patterns if p.strip()))
        self._compiled = [compile_pattern(p) for p in self.patterns]

    def matching_pattern(self, relative_path: str) -> str | None:
        """First pattern matching ``relative_path`` itself, if any"""
        path = to_posix(relative_path)
        for compiled in self._compiled:
            if compiled.matches(path):
                return compiled.source
        return None

    def matches(self, relative_path: str) -> bool:
        """True if any pattern matches ``relative_path`` (logical OR)"""
        return self.matching_pattern(relative_path) is not None


def matches(relative_path: str, patterns: Iterable[str]) -> bool:
    """Module-level shortcut for ``PatternMatcher(patterns).matches(path)``"""
    return PatternMatcher(patterns).matches(relative_path)
