"""
Connection string discovery and rewriting.

* :mod:`.scanner` – heuristic, pattern based discovery across a file tree
* :mod:`.verifier` – reachability probe for replacement values
* :mod:`.resolver` – operator driven selection and replacement
"""

from .resolver import ConnectionStringResolver, replace_in_files
from .scanner import iter_connection_string_candidates, scan_for_connection_strings

__all__ = [
    "ConnectionStringResolver",
    "replace_in_files",
    "iter_connection_string_candidates",
    "scan_for_connection_strings",
]
