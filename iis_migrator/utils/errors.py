"""
Error types and structured event logging for a migration run.

The :mod:`iis_migrator.utils.errors` module centralizes two things:

* the exception hierarchy raised by every component of the pipeline, and
* the writing of JSON Lines event entries for both failed and successful
  steps, appended under ``<run_dir>/logs`` so that a run can be reviewed or
  parsed after it finishes.

Exceptions deriving from :class:`FatalError` are never retried by
:func:`iis_migrator.utils.retry.run_with_retries`; everything else is treated
as a transient operational failure.

The ``EVENTS`` dictionary maps event codes to human readable messages.  Codes
not present in the dictionary fall back to the code itself.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional


class MigrationError(Exception):
    """Base class for all errors raised by the migration pipeline."""


class FatalError(MigrationError):
    """An error that must never be retried."""


class PreconditionError(FatalError):
    """A missing path, non-empty destination, unknown site or reused run."""


class PublicStorageError(FatalError):
    """The intermediate storage container grants public read access."""


class AddressLimitError(FatalError):
    """The cloud account ran out of public IP addresses for a new environment."""


class ExportError(FatalError):
    """The package exporter exited with a failure."""


class RetryExhausted(MigrationError):
    """Raised once a unit of work has failed more times than allowed."""

    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{description} failed after {attempts} attempt(s): {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class ReportGenerationError(MigrationError):
    """The readiness report could not be produced; migratability is unknown."""


class ResumptionError(MigrationError):
    """A named session entry could not be read back."""


class ConnectionVerificationError(MigrationError):
    """A replacement connection string could not reach its server."""


class MigrationAborted(MigrationError):
    """The operator or the configuration stopped the run."""


# Mapping of event codes used throughout the migration to descriptive messages.
# The keys include both error and success codes as the same lookup is used by
# :func:`report_error` and :func:`report_ok`.
EVENTS: Dict[str, str] = {
    "RUN_CREATED": "Migration run created",
    "READINESS_REPORT": "Readiness report generated",
    "READINESS_FAILED": "Readiness report could not be generated",
    "EXPORT": "Site exported by the package exporter",
    "BUNDLE_BUILT": "Deployment bundle created",
    "CERTIFICATES_SCRUBBED": "Certificates removed from payload",
    "CONNECTION_STRING_REPLACED": "Connection string rewritten",
    "CONNECTION_STRING_MANUAL": "Connection string left for manual replacement",
    "STORAGE_PUBLIC": "Storage container was publicly readable",
    "DEPLOY_SUCCEEDED": "Environment converged to a healthy state",
    "DEPLOY_FAILED": "Environment did not converge",
    "RUN_FAILED": "Migration run failed",
}

_LOG_DIR = "logs"
_ERROR_LOG = "errors.jsonl"
_OK_LOG = "events.jsonl"


def _write_jsonl(path: str, data: Dict[str, Any]) -> None:
    """Append ``data`` as a JSON object followed by a newline to ``path``."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, default=str)
        f.write("\n")


def report_error(run_dir: str, code: str, exc: Optional[BaseException] = None, extra: Optional[Dict[str, Any]] = None) -> None:
    """Record an error event for the run rooted at ``run_dir``.

    Parameters
    ----------
    run_dir:
        Directory of the current migration run.
    code:
        A key identifying the type of error.  If ``code`` is present in
        :data:`EVENTS` its value will be used as the message.
    exc:
        Optional exception instance that triggered the error.  Its string
        representation and type name are included in the entry.
    extra:
        Optional dictionary of additional fields to merge into the entry.
    """
    entry: Dict[str, Any] = {"code": code, "message": EVENTS.get(code, code)}
    if exc is not None:
        entry["error"] = str(exc)
        entry["error_type"] = type(exc).__name__
    if extra:
        entry.update(extra)
    _write_jsonl(os.path.join(run_dir, _LOG_DIR, _ERROR_LOG), entry)


def report_ok(run_dir: str, code: str, extra: Optional[Dict[str, Any]] = None) -> None:
    """Record a successful event for the run rooted at ``run_dir``.

    Parameters
    ----------
    run_dir:
        Directory of the current migration run.
    code:
        A key identifying the type of event.
    extra:
        Optional dictionary of additional fields to merge into the entry.
    """
    entry: Dict[str, Any] = {"code": code, "message": EVENTS.get(code, code)}
    if extra:
        entry.update(extra)
    _write_jsonl(os.path.join(run_dir, _LOG_DIR, _OK_LOG), entry)
