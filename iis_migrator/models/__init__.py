"""
Pydantic records shared by every stage of a migration run.

These are the versioned data-transfer records persisted by
:class:`iis_migrator.utils.session_store.SessionStore`.
"""

from .records import (
    CandidateSource,
    CloudApplication,
    CloudApplicationVersion,
    CloudEnvironment,
    ConnectionStringCandidate,
    ConnectionStringReplacement,
    ConnectionStringReplacementSet,
    HealthPoll,
    HealthState,
    MigrationRun,
    ReadinessCheck,
    ReadinessReport,
    ReplacementMode,
    RunStatus,
)

__all__ = [
    "CandidateSource",
    "CloudApplication",
    "CloudApplicationVersion",
    "CloudEnvironment",
    "ConnectionStringCandidate",
    "ConnectionStringReplacement",
    "ConnectionStringReplacementSet",
    "HealthPoll",
    "HealthState",
    "MigrationRun",
    "ReadinessCheck",
    "ReadinessReport",
    "ReplacementMode",
    "RunStatus",
]
