"""
Per-run store of named, versioned snapshots used for manual resumption.

Each entry is a JSON document ``<run_dir>/session/<name>.json`` of the form::

    {"schema_version": 1, "kind": "ReadinessReport", "data": {...}}

Writing an entry overwrites any previous one; reading an absent or
unreadable entry raises :class:`ResumptionError`.
"""

from __future__ import annotations

import json
import os
import re
from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..models.records import SCHEMA_VERSION
from .errors import ResumptionError

M = TypeVar("M", bound=BaseModel)

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class SessionStore:
    def __init__(self, run_dir: str) -> None:
        self.directory = os.path.join(run_dir, "session")

    def _path(self, name: str) -> str:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid session entry name: {name!r}")
        return os.path.join(self.directory, f"{name}.json")

    def save(self, name: str, record: BaseModel) -> str:
        path = self._path(name)
        os.makedirs(self.directory, exist_ok=True)
        document = {
            "schema_version": SCHEMA_VERSION,
            "kind": type(record).__name__,
            "data": record.model_dump(mode="json"),
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        return path

    def load(self, name: str, model: Type[M]) -> M:
        path = self._path(name)
        if not os.path.exists(path):
            raise ResumptionError(f"No session entry named '{name}' in {self.directory}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise ResumptionError(f"Session entry '{name}' is not valid JSON: {e}") from e

        if document.get("schema_version") != SCHEMA_VERSION:
            raise ResumptionError(
                f"Session entry '{name}' has schema version {document.get('schema_version')}, "
                f"expected {SCHEMA_VERSION}"
            )
        if document.get("kind") != model.__name__:
            raise ResumptionError(
                f"Session entry '{name}' holds a {document.get('kind')}, not a {model.__name__}"
            )
        try:
            return model.model_validate(document.get("data", {}))
        except ValidationError as e:
            raise ResumptionError(f"Session entry '{name}' does not match {model.__name__}: {e}") from e

    def exists(self, name: str) -> bool:
        return os.path.exists(self._path(name))
