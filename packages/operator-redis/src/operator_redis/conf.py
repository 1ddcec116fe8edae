"""
Line-oriented redis.conf editing.

RedisConf holds the file as a list of lines, applies get/set/unset/append in
memory and writes the result back in a single atomic pass. Repeating the same
scalar set() leaves the file byte-identical.

Line model:
- A directive is "key value" on one line; "#" prefixes disable it.
- A key matches any line of the form ``^#*\\s*key(\\s|$)``, commented or not.
- "save" is list-typed: set() always appends a new rule.

Example:
    conf = RedisConf.load(Path("/app/etc/redis.conf"))
    conf.set("port", "6379")
    conf.set("save", "900 1")
    conf.unset("requirepass")
    conf.save()
"""

import os
import re
import tempfile
from pathlib import Path

from operator_redis.exceptions import ConfigFileError

LIST_KEYS = frozenset({"save"})

EMPTY_VALUE = '""'


def sanitize_value(value: str) -> str:
    """
    Make a value safe for a single config line.

    Drops CR, LF and TAB characters, strips surrounding whitespace and renders
    an empty value as ``""`` so "set to empty" stays distinguishable from
    "absent". The written value is exactly what get() returns.
    """
    value = value.replace("\r", "").replace("\n", "").replace("\t", "").strip()
    return value if value else EMPTY_VALUE


def _key_pattern(key: str) -> re.Pattern[str]:
    return re.compile(rf"^#*\s*{re.escape(key)}(?:\s|$)")


def _value_of(line: str, key: str) -> str:
    body = line.lstrip("#").lstrip()
    return body[len(key):].strip()


class RedisConf:
    """
    In-memory model of a redis.conf file.

    Attributes:
        path: File the lines were loaded from and are saved to.
        lines: Current lines, without trailing newlines.
    """

    def __init__(self, path: Path, lines: list[str] | None = None) -> None:
        self.path = Path(path)
        self.lines: list[str] = list(lines or [])

    @classmethod
    def load(cls, path: Path) -> "RedisConf":
        """
        Read a config file. A missing file loads as empty.

        Raises:
            ConfigFileError: If the file exists but cannot be read.
        """
        path = Path(path)
        try:
            text = path.read_text()
        except FileNotFoundError:
            return cls(path)
        except OSError as e:
            raise ConfigFileError(path, str(e)) from e
        return cls(path, text.splitlines())

    def get(self, key: str) -> str | None:
        """
        Return the value on the last line matching key, commented or not.

        Returns:
            The text after the key token, or None if no line matches.
        """
        pattern = _key_pattern(key)
        for line in reversed(self.lines):
            if pattern.match(line):
                return _value_of(line, key)
        return None

    def set(self, key: str, value: str) -> None:
        """
        Set a directive.

        List keys append a new line unconditionally. Scalar keys replace the
        first matching line in place and drop any other matching lines; with
        no match the directive is appended.
        """
        rendered = f"{key} {sanitize_value(value)}"
        if key in LIST_KEYS:
            self.lines.append(rendered)
            return

        pattern = _key_pattern(key)
        result: list[str] = []
        replaced = False
        for line in self.lines:
            if not pattern.match(line):
                result.append(line)
            elif not replaced:
                result.append(rendered)
                replaced = True
        if not replaced:
            result.append(rendered)
        self.lines = result

    def unset(self, key: str) -> None:
        """Remove every line matching key, commented or not."""
        pattern = _key_pattern(key)
        self.lines = [line for line in self.lines if not pattern.match(line)]

    def append(self, key: str, value: str) -> None:
        """Append a directive without touching existing lines."""
        self.lines.append(f"{key} {sanitize_value(value)}")

    def has_line(self, key: str, value: str) -> bool:
        """Check for an active line equal to "key value" (whitespace-insensitive)."""
        wanted = [key, *sanitize_value(value).split()]
        return any(line.split() == wanted for line in self.lines if not line.lstrip().startswith("#"))

    def render(self) -> str:
        return "".join(f"{line}\n" for line in self.lines)

    def save(self) -> None:
        """
        Write lines back to disk atomically.

        Writes a temporary file in the same directory and renames it over the
        original, creating the parent directory when needed.

        Raises:
            ConfigFileError: On any IO failure.
        """
        atomic_write(self.path, self.render())


def atomic_write(path: Path, text: str) -> None:
    """
    Replace path with text via temp file + rename in the same directory.

    Raises:
        ConfigFileError: On any IO failure.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(text)
            if path.exists():
                os.chmod(tmp_name, path.stat().st_mode & 0o7777)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise ConfigFileError(path, str(e)) from e
