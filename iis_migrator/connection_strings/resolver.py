"""
Interactive discovery, selection and replacement of connection strings.

The resolver moves through ``Discovering → Selecting → (AutoReplacing |
ManualReplacing) → Done``.  Whether replacements are applied automatically
or left to the operator is decided once for the whole run: a single
selection that cannot be found under the content root forces manual mode.

All operator interaction goes through the ``prompt`` callable (``input`` by
default) so that scripted answers can drive the resolver in tests.
"""

from __future__ import annotations

import os
import shutil
from enum import Enum
from typing import Callable, List, Optional

from ..extractors.iis_config import extract_declared_connection_strings, find_web_config
from ..models.records import (
    CandidateSource,
    ConnectionStringCandidate,
    ConnectionStringReplacement,
    ConnectionStringReplacementSet,
    ReplacementMode,
)
from ..utils.errors import MigrationError
from ..utils.retry import UNTIL_SUCCESS, run_with_retries
from .scanner import is_binary_path, iter_connection_string_candidates
from .verifier import TcpConnectionVerifier

YES_ANSWERS = ("y", "yes")


class ResolverState(str, Enum):
    DISCOVERING = "discovering"
    SELECTING = "selecting"
    AUTO_REPLACING = "auto_replacing"
    MANUAL_REPLACING = "manual_replacing"
    DONE = "done"


def _print_log(message: str, level: str = "INFO") -> None:
    print(f"[{level}] {message}")


def _read_text(path: str) -> str:
    # surrogateescape round-trips bytes that are not valid UTF-8.
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        return f.read()


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        f.write(text)


def find_files_containing(root: str, text: str) -> List[str]:
    """Return every non-binary file under ``root`` containing ``text`` literally."""
    matches: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            path = os.path.join(dirpath, filename)
            if is_binary_path(path):
                continue
            try:
                if text in _read_text(path):
                    matches.append(path)
            except OSError:
                continue
    return matches


def backup_file(path: str, root: str, backup_dir: str) -> Optional[str]:
    """Copy ``path`` below ``backup_dir`` once; later calls keep the first copy."""
    relative = os.path.relpath(path, root)
    if relative.startswith(os.pardir):
        relative = os.path.basename(path)
    target = os.path.join(backup_dir, relative)
    if os.path.exists(target):
        return None
    os.makedirs(os.path.dirname(target), exist_ok=True)
    shutil.copy2(path, target)
    return target


def replace_in_files(
    old: str,
    new: str,
    files: List[str],
    *,
    root: Optional[str] = None,
    backup_dir: Optional[str] = None,
    log: Callable[..., None] = _print_log,
) -> int:
    """
    Literally replace every occurrence of ``old`` with ``new`` in ``files``.

    Each file is checked again right before it is rewritten; a file that no
    longer contains ``old`` is left untouched.

    :return: The number of files modified.
    """
    modified = 0
    for path in files:
        if not os.path.isfile(path):
            log(f"{path} no longer exists, skipping", "WARNING")
            continue
        content = _read_text(path)
        occurrences = content.count(old)
        if not occurrences:
            log(f"Connection string no longer present in {path}, skipping", "WARNING")
            continue
        if backup_dir:
            backup_file(path, root or os.path.dirname(path), backup_dir)
        _write_text(path, content.replace(old, new))
        log(f"Replaced {occurrences} occurrence(s) in {path}")
        modified += 1
    return modified


class ConnectionStringResolver:
    def __init__(
        self,
        content_root: str,
        *,
        verifier=None,
        prompt: Callable[[str], str] = input,
        log: Callable[..., None] = _print_log,
        backup_dir: Optional[str] = None,
        web_config: Optional[str] = None,
    ) -> None:
        self.content_root = content_root
        self.verifier = verifier or TcpConnectionVerifier()
        self.prompt = prompt
        self.log = log
        self.backup_dir = backup_dir
        self.web_config = web_config
        self.state = ResolverState.DISCOVERING
        self.mode = ReplacementMode.AUTO

    # ------------------------------------------------------------------
    # Discovering
    # ------------------------------------------------------------------
    def discover(self) -> List[ConnectionStringCandidate]:
        """Declared candidates first, then scanned ones; duplicates are kept."""
        self.state = ResolverState.DISCOVERING
        candidates: List[ConnectionStringCandidate] = []
        web_config = self.web_config or find_web_config(self.content_root)
        if web_config:
            for name, value, line_number in extract_declared_connection_strings(web_config):
                candidates.append(
                    ConnectionStringCandidate(
                        text=value,
                        file_path=web_config,
                        line_number=line_number,
                        source=CandidateSource.DECLARED,
                    )
                )
        candidates.extend(iter_connection_string_candidates(self.content_root))
        self.log(f"Found {len(candidates)} connection string candidate(s) under {self.content_root}")
        return candidates

    def show_candidates(self, candidates: List[ConnectionStringCandidate]) -> None:
        for index, candidate in enumerate(candidates, start=1):
            self.log(f"  [{index}] {candidate.text} ({candidate.location()}, {candidate.source.value})")

    # ------------------------------------------------------------------
    # Selecting
    # ------------------------------------------------------------------
    def select(self, candidates: List[ConnectionStringCandidate]) -> List[ConnectionStringReplacement]:
        self.state = ResolverState.SELECTING
        self.mode = ReplacementMode.AUTO
        selections: List[ConnectionStringReplacement] = []
        selected_texts = set()

        while True:
            answer = self.prompt(
                "Enter the number of a connection string to replace (press Enter to finish): "
            ).strip()
            if not answer:
                break
            try:
                index = int(answer)
            except ValueError:
                self.log(f"'{answer}' is not a number", "WARNING")
                continue
            if not 1 <= index <= len(candidates):
                self.log(f"Choose a number between 1 and {len(candidates)}", "WARNING")
                continue

            candidate = candidates[index - 1]
            if candidate.text in selected_texts:
                self.log(f"Connection string [{index}] is already selected")
                continue

            files = find_files_containing(self.content_root, candidate.text)
            if files:
                selections.append(ConnectionStringReplacement(old=candidate.text, files=files, verified=True))
                selected_texts.add(candidate.text)
                self.log(f"Selected [{index}], found in {len(files)} file(s)")
                continue

            self.log(
                f"Connection string [{index}] could not be found verbatim under {self.content_root}",
                "WARNING",
            )
            keep = self.prompt(
                "Keep it on record and replace all connection strings manually? [y/N]: "
            ).strip().lower()
            if keep in YES_ANSWERS:
                selections.append(
                    ConnectionStringReplacement(old=candidate.text, files=[candidate.file_path], verified=False)
                )
                selected_texts.add(candidate.text)
                self.mode = ReplacementMode.MANUAL
            else:
                self.log("Selection dropped, choose another connection string")
        return selections

    # ------------------------------------------------------------------
    # Replacing
    # ------------------------------------------------------------------
    def _request_verified_value(self, replacement: ConnectionStringReplacement) -> str:
        def attempt(n: int) -> str:
            value = self.prompt(f"Enter the new connection string to replace '{replacement.old}': ").strip()
            if not value:
                raise MigrationError("No connection string entered")
            self.verifier.verify(value)
            return value

        return run_with_retries(
            attempt,
            max_retries=UNTIL_SUCCESS,
            description="Connection string verification",
            log=self.log,
        )

    def auto_replace(self, replacements: List[ConnectionStringReplacement]) -> None:
        self.state = ResolverState.AUTO_REPLACING
        for replacement in replacements:
            replacement.new = self._request_verified_value(replacement)
            modified = replace_in_files(
                replacement.old,
                replacement.new,
                replacement.files,
                root=self.content_root,
                backup_dir=self.backup_dir,
                log=self.log,
            )
            self.log(f"Connection string rewritten in {modified} file(s)")

    def manual_replace(self, replacements: List[ConnectionStringReplacement]) -> None:
        self.state = ResolverState.MANUAL_REPLACING
        self.log("Replace the following connection strings by hand before continuing:")
        for replacement in replacements:
            self.log(f"  {replacement.old}")
            for path in replacement.files:
                self.log(f"    in {path}")

        def confirm(n: int) -> None:
            answer = self.prompt("Type 'yes' once every connection string above has been updated: ")
            if answer.strip().lower() not in YES_ANSWERS:
                raise MigrationError("Manual replacement not confirmed yet")

        run_with_retries(confirm, max_retries=UNTIL_SUCCESS, description="Manual replacement", log=self.log)

    def resolve(self) -> ConnectionStringReplacementSet:
        candidates = self.discover()
        if not candidates:
            self.state = ResolverState.DONE
            return ConnectionStringReplacementSet()
        self.show_candidates(candidates)
        replacements = self.select(candidates)
        if replacements:
            if self.mode == ReplacementMode.MANUAL:
                self.manual_replace(replacements)
            else:
                self.auto_replace(replacements)
        self.state = ResolverState.DONE
        return ConnectionStringReplacementSet(mode=self.mode, replacements=replacements)
