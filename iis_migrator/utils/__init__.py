"""
Utility helpers used by the migration tool.

This subpackage exposes the error hierarchy, structured event logging, the
retry executor and the per-run session store.
"""

from .errors import EVENTS, report_error, report_ok
from .retry import UNTIL_SUCCESS, run_with_retries
from .session_store import SessionStore

__all__ = [
    "EVENTS",
    "report_error",
    "report_ok",
    "UNTIL_SUCCESS",
    "run_with_retries",
    "SessionStore",
]
