"""The plaintext format of the credential store.

One ``KEY=value`` entry per line. Blank lines and ``#`` comments are ignored,
and an ``export `` prefix is accepted so files written for ``source`` parse.
Whitespace around the key is dropped but the value is everything after the
first ``=``, verbatim: ``A = 1`` stores ``" 1"``, and quotes are not removed.
Reading is lenient (first entry for a key wins); anything that writes a store
parses it strictly, rejecting duplicate keys and malformed lines.

Error messages and log lines refer to line numbers only, never to content.
"""

import logging
import re
import shlex
from typing import Dict, Iterable, List, NamedTuple, Union

from .errors import KeyNotFoundError, MalformedStoreError

log = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
EXPORT_PREFIX = "export "

TEMPLATE_HEADER = """\
# Keys available in the secrets store (values are kept encrypted).
# Regenerate with: secrets --template
"""


class Entry(NamedTuple):
    key: str
    value: str
    line: int


def decode(plaintext: Union[bytes, str]) -> str:
    if isinstance(plaintext, str):
        return plaintext
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedStoreError(f"Store is not valid UTF-8 (byte offset {e.start})")


def parse(plaintext: Union[bytes, str], strict: bool = False) -> List[Entry]:
    """
    Parse store text into entries, in file order.

    With strict=False duplicates and malformed lines are skipped with a
    warning and the first entry for a key wins. With strict=True any of them
    raises MalformedStoreError listing every offending line.
    """
    text = decode(plaintext)
    entries: List[Entry] = []
    seen: Dict[str, int] = {}
    problems: List[str] = []

    for number, raw in enumerate(text.split("\n"), start=1):
        line = raw[:-1] if raw.endswith("\r") else raw
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        if "=" not in line:
            problems.append(f"line {number}: expected KEY=value")
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith(EXPORT_PREFIX):
            key = key[len(EXPORT_PREFIX):].strip()

        if not KEY_PATTERN.fullmatch(key):
            problems.append(f"line {number}: invalid key name")
            continue

        if key in seen:
            problems.append(f"line {number}: duplicate key {key} (first defined on line {seen[key]})")
            continue

        seen[key] = number
        entries.append(Entry(key, value, number))

    if problems:
        if strict:
            raise MalformedStoreError("Invalid secrets file:\n  " + "\n  ".join(problems))
        for problem in problems:
            log.warning("Skipping %s", problem)

    return entries


def validate(plaintext: Union[bytes, str]) -> List[Entry]:
    """Strict parse, for anything about to be encrypted."""
    return parse(plaintext, strict=True)


def lookup(entries: Iterable[Entry], key: str) -> str:
    for entry in entries:
        if entry.key == key:
            return entry.value
    raise KeyNotFoundError(f"Key not found: {key}")


def keys(entries: Iterable[Entry]) -> List[str]:
    return [entry.key for entry in entries]


def export(entries: Iterable[Entry]) -> str:
    """Render entries as an env file: KEY=value per line."""
    return "".join(f"{entry.key}={entry.value}\n" for entry in entries)


def shell(entries: Iterable[Entry]) -> str:
    """
    Render entries as POSIX shell export statements.

    Values are single-quoted, so evaluating the output sets exactly the
    exported values even when they contain spaces, quotes or $.
    """
    return "".join(
        f"export {entry.key}={shlex.quote(entry.value)}\n" for entry in entries
    )


def template(key_names: Iterable[str]) -> str:
    """A plaintext template listing keys with empty values."""
    return TEMPLATE_HEADER + "".join(f"{key}=\n" for key in key_names)
