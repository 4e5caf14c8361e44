"""Rewrite compiler dependency files so objects depend on the config options they use.

The ``-MD`` output of the compiler lists every header a source file read,
including the generated ``autoconf.h`` that nearly everything includes.
This tool drops that header and instead adds a dependency on
``include/config/<option>.h`` for every ``CONFIG_<OPTION>`` word found in
the listed prerequisites.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

CONFIG_PREFIX = "CONFIG_"
MODULE_SUFFIX = "_MODULE"
DEFAULT_CONFIG_DIR = "include/config"
IGNORED_SUFFIXES = (
    "include/generated/autoconf.h",
    "include/generated/autoksyms.h",
)

_WORD_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")
_SEPARATORS = re.compile(r"[ \\\n]+")
_USAGE = "Usage: fixdep <depfile> <target> <cmdline>\n"


class FixdepError(Exception):
    """Raised when a dependency file cannot be read or parsed."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def dep_path(name: str, directory: str = DEFAULT_CONFIG_DIR) -> str:
    """Map a config symbol name to its marker header path.

    Underscores become path separators, letters are lower-cased and runs of
    separators (including leading ones) collapse.
    """
    out = []
    prev = "/"
    for ch in name:
        c = "/" if ch == "_" else ch.lower()
        if c != "/" or prev != "/":
            out.append(c)
        prev = c
    return f"{directory}/{''.join(out)}.h"


def _dep_line(name: str, directory: str) -> str:
    return f"    $(wildcard {dep_path(name, directory)}) \\\n"


@dataclass
class ConfigTracker:
    """Remembers which config symbols have already produced a dependency."""

    directory: str = DEFAULT_CONFIG_DIR
    seen: set = field(default_factory=set)

    def use(self, name: str) -> Optional[str]:
        """Record ``name``; return its dependency line the first time, else ``None``."""
        if name in self.seen:
            return None
        self.seen.add(name)
        return _dep_line(name, self.directory)

    def parse_config_text(self, text: str) -> str:
        """Scan ``text`` for ``CONFIG_*`` words and return lines for the new ones."""
        lines = []
        pos = 0
        while True:
            found = text.find(CONFIG_PREFIX, pos)
            if found < 0:
                break
            start = found + len(CONFIG_PREFIX)
            if found > 0 and text[found - 1] in _WORD_CHARS:
                pos = start
                continue
            end = start
            while end < len(text) and text[end] in _WORD_CHARS:
                end += 1
            word = text[start:end]
            if word.endswith(MODULE_SUFFIX):
                word = word[: -len(MODULE_SUFFIX)]
            if word:
                line = self.use(word)
                if line is not None:
                    lines.append(line)
            pos = end
        return "".join(lines)


def _is_ignored_file(name: str) -> bool:
    return name.endswith(IGNORED_SUFFIXES)


def _read_file(filename: str) -> str:
    try:
        return Path(filename).read_bytes().decode("latin-1")
    except OSError as exc:
        raise FixdepError(
            f"fixdep: error opening file: {filename}: {exc.strerror or exc}", exit_code=2
        ) from exc


def parse_dep_file(
    text: str,
    target: str,
    read_file: Callable[[str], str] = _read_file,
) -> str:
    """Transform the dependency list ``text`` for ``target`` and return the result.

    ``read_file`` gives the contents of each listed prerequisite, which is
    scanned for config symbols.
    """
    tracker = ConfigTracker()
    out = []
    saw_any_target = False
    is_first_dep = False
    for token in _SEPARATORS.split(text):
        if not token:
            continue
        if token.endswith(":"):
            is_first_dep = True
            continue
        if _is_ignored_file(token):
            continue
        if is_first_dep:
            if not saw_any_target:
                saw_any_target = True
                out.append(f"source_{target} := {token}\n\n")
                out.append(f"deps_{target} := \\\n")
            is_first_dep = False
        else:
            out.append(f"  {token} \\\n")
        out.append(tracker.parse_config_text(read_file(token)))

    if not saw_any_target:
        raise FixdepError("fixdep: parse error; no targets found", exit_code=1)

    out.append(f"\n{target}: $(deps_{target})\n\n")
    out.append(f"$(deps_{target}):\n")
    return "".join(out)


def fixdep(depfile: str, target: str, cmdline: str) -> str:
    """Read ``depfile`` and return the full rewritten dependency snippet."""
    header = f"cmd_{target} := {cmdline}\n\n"
    return header + parse_dep_file(_read_file(depfile), target, _read_file)


def main(argv=None) -> int:
    """Command entry point: ``fixdep <depfile> <target> <cmdline>``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 3:
        sys.stderr.write(_USAGE)
        return 1
    depfile, target, cmdline = args
    try:
        result = fixdep(depfile, target, cmdline)
    except FixdepError as exc:
        sys.stderr.write(f"{exc}\n")
        return exc.exit_code
    try:
        sys.stdout.write(result)
        sys.stdout.flush()
    except OSError as exc:
        sys.stderr.write(f"fixdep: {exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())