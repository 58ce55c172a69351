"""
Heuristic discovery of connection strings in an arbitrary file tree.

The scanner knows nothing about file formats: it reads every non-binary file
line by line and reports runs of ``key=value;`` pairs whose keys fit one of a
fixed, ordered list of connection-string shapes.  False positives are
expected; the operator picks the real ones in
:mod:`iis_migrator.connection_strings.resolver`.

A line is cut at quotes, angle brackets and semicolons and every piece is
looked at once, so a single minified line costs time proportional to its
length.
"""

from __future__ import annotations

import os
import re
from collections import deque
from typing import Iterator, List, Optional, Tuple

from ..models.records import CandidateSource, ConnectionStringCandidate

SERVER = "server"
USER = "user"
PASSWORD = "password"
INTEGRATED = "integrated"
CATALOG = "catalog"
PROVIDER = "provider"

# Normalized key -> role it plays in a connection string.
KEY_ROLES = {
    "data source": SERVER,
    "server": SERVER,
    "address": SERVER,
    "addr": SERVER,
    "network address": SERVER,
    "user id": USER,
    "uid": USER,
    "user": USER,
    "password": PASSWORD,
    "pwd": PASSWORD,
    "integrated security": INTEGRATED,
    "trusted_connection": INTEGRATED,
    "initial catalog": CATALOG,
    "database": CATALOG,
    "provider": PROVIDER,
}

# Ordered: the first shape found on a line wins.  Roles appear in this order,
# other keys may sit before, between and after them.
CONNECTION_STRING_SHAPES: List[Tuple[str, ...]] = [
    (PROVIDER, SERVER),
    (SERVER, USER, PASSWORD),
    (SERVER, PASSWORD, USER),
    (USER, PASSWORD, SERVER),
    (SERVER, INTEGRATED),
    (SERVER, CATALOG),
]

_FRAGMENT_SPLIT_RE = re.compile(r"[\"'<>\r\n]")
_WORD_RE = re.compile(r"[A-Za-z_]\w*")
_GENERIC_KEY_RE = re.compile(r"[A-Za-z][\w ]*")
_MAX_KEY_WORDS = max(len(key.split()) for key in KEY_ROLES)

BINARY_EXTENSIONS = frozenset(
    {
        ".dll", ".exe", ".pdb", ".so", ".dylib", ".lib", ".obj", ".bin",
        ".zip", ".gz", ".tgz", ".7z", ".rar", ".tar", ".cab", ".msi", ".nupkg",
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".tif", ".tiff", ".webp", ".svgz",
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".mp3", ".mp4", ".avi", ".mov", ".wav", ".wmv", ".flv",
        ".woff", ".woff2", ".ttf", ".eot", ".otf",
        ".mdf", ".ldf", ".bak", ".mdb", ".accdb", ".sqlite", ".db",
        ".pfx", ".p12", ".cer", ".der",
    }
)


def is_binary_path(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in BINARY_EXTENSIONS


def _key_before(piece: str) -> Optional[Tuple[str, int]]:
    """Key written right before an ``=`` sign, as ``(normalized name, offset)``."""
    end = len(piece.rstrip())
    words = list(deque(_WORD_RE.finditer(piece, 0, end), maxlen=_MAX_KEY_WORDS))
    if words and words[-1].end() == end:
        for count in range(len(words), 0, -1):
            tail = words[-count:]
            start = tail[0].start()
            if start and (piece[start - 1].isalnum() or piece[start - 1] == "_"):
                continue
            if any(piece[a.end():b.start()].strip() for a, b in zip(tail, tail[1:])):
                continue
            name = " ".join(w.group(0).lower() for w in tail)
            if name in KEY_ROLES:
                return name, start

    stripped = piece.strip()
    if _GENERIC_KEY_RE.fullmatch(stripped):
        return " ".join(stripped.lower().split()), len(piece) - len(piece.lstrip())
    return None


def _segment_key(segment: str) -> Optional[Tuple[str, int, bool]]:
    """
    Key of one ``;``-separated segment as ``(name, offset, starts_run)``.

    A segment opening with a key continues the current run.  A known key
    preceded by other text (``conn=Data Source=...``) starts a new run there.
    """
    pieces = segment.split("=")
    offset = 0
    leading: Optional[Tuple[str, int]] = None
    for index, piece in enumerate(pieces[:-1]):
        key = _key_before(piece)
        if key is not None:
            name, start = key
            if index == 0 and start == len(piece) - len(piece.lstrip()):
                if name in KEY_ROLES:
                    return name, start, False
                leading = key
            elif name in KEY_ROLES:
                return name, offset + start, True
        offset += len(piece) + 1
    if leading is not None:
        return leading[0], leading[1], False
    return None


def _runs(fragment: str) -> Iterator[Tuple[str, List[str]]]:
    """Yield ``(text, roles)`` for every run of ``key=value`` segments in ``fragment``."""
    start: Optional[int] = None
    end = 0
    roles: List[str] = []
    position = 0
    for segment in fragment.split(";"):
        segment_end = position + len(segment)
        key = _segment_key(segment)
        if key is None:
            if "=" in segment and start is not None:
                yield fragment[start:end].strip(), roles
                start = None
            elif start is not None:
                # a value holding ";" or the trailing separator
                end = segment_end
        else:
            name, offset, starts_run = key
            if starts_run and start is not None:
                yield fragment[start:end].strip(), roles
                start = None
            if start is None:
                start, roles = position + offset, []
            if name in KEY_ROLES:
                roles.append(KEY_ROLES[name])
            end = segment_end
        position = segment_end + 1
    if start is not None:
        yield fragment[start:end].strip(), roles


def _has_shape(roles: List[str], shape: Tuple[str, ...]) -> bool:
    remaining = iter(roles)
    return all(role in remaining for role in shape)


def match_connection_string(line: str) -> Optional[str]:
    runs = [run for fragment in _FRAGMENT_SPLIT_RE.split(line) if "=" in fragment for run in _runs(fragment)]
    for shape in CONNECTION_STRING_SHAPES:
        for text, roles in runs:
            if text and _has_shape(roles, shape):
                return text
    return None


def iter_connection_string_candidates(root: str) -> Iterator[ConnectionStringCandidate]:
    """
    Walk ``root`` and yield a candidate for every matching line.

    Files are opened one at a time and read line by line, so the size of
    the tree does not matter.  Unreadable files are skipped.

    :param root: Directory to scan recursively.
    :return: An iterator of :class:`ConnectionStringCandidate`.
    """
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            path = os.path.join(dirpath, filename)
            if is_binary_path(path) or not os.path.isfile(path):
                continue
            try:
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    for line_number, line in enumerate(f, start=1):
                        text = match_connection_string(line)
                        if text:
                            yield ConnectionStringCandidate(
                                text=text,
                                file_path=path,
                                line_number=line_number,
                                source=CandidateSource.SCANNED,
                            )
            except OSError:
                continue


def scan_for_connection_strings(root: str) -> List[ConnectionStringCandidate]:
    return list(iter_connection_string_candidates(root))
