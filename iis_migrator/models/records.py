from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    CREATED = "created"
    ASSESSING = "assessing"
    ASSESSED = "assessed"
    RESOLVING = "resolving"
    PACKAGING = "packaging"
    DEPLOYING = "deploying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class MigrationRun(BaseModel):
    run_id: str = Field(..., min_length=1)
    workspace: str
    status: RunStatus = RunStatus.CREATED
    created_at: datetime = Field(default_factory=_utcnow)
    site_name: Optional[str] = None


class ReadinessCheck(BaseModel):
    """One compatibility test and its diagnostic log line."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    result: bool
    log: str = ""


class ReadinessReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: int = SCHEMA_VERSION
    site_name: str
    generated_at: datetime = Field(default_factory=_utcnow)
    checks: List[ReadinessCheck] = Field(default_factory=list)

    @property
    def has_incompatibility(self) -> bool:
        return any(not check.result for check in self.checks)

    @property
    def failed_checks(self) -> List[ReadinessCheck]:
        return [check for check in self.checks if not check.result]

    def render(self) -> str:
        lines = [
            f"Readiness report for site '{self.site_name}'",
            f"Generated at {self.generated_at.isoformat()}",
            "",
        ]
        for check in self.checks:
            status = "PASS" if check.result else "FAIL"
            lines.append(f"[{status}] {check.name}: {check.description}")
            if check.log:
                lines.append(f"       {check.log}")
        lines.append("")
        if self.has_incompatibility:
            lines.append(f"{len(self.failed_checks)} incompatibility(ies) found.")
        else:
            lines.append("No incompatibilities found.")
        return "\n".join(lines)


class CandidateSource(str, Enum):
    DECLARED = "declared"
    SCANNED = "scanned"


class ConnectionStringCandidate(BaseModel):
    """A heuristically discovered occurrence; not a confirmed secret."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1)
    file_path: str
    line_number: int = Field(..., ge=0)
    source: CandidateSource = CandidateSource.SCANNED

    def location(self) -> str:
        return f"{self.file_path}:{self.line_number}"


class ConnectionStringReplacement(BaseModel):
    old: str = Field(..., min_length=1)
    new: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    verified: bool = False

    @field_validator("files", mode="before")
    @classmethod
    def _dedup_files(cls, v: Optional[List[str]]):
        if not v:
            return []
        return sorted(set(v))


class ReplacementMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ConnectionStringReplacementSet(BaseModel):
    schema_version: int = SCHEMA_VERSION
    mode: ReplacementMode = ReplacementMode.AUTO
    replacements: List[ConnectionStringReplacement] = Field(default_factory=list)


class HealthState(str, Enum):
    GREEN = "Green"
    YELLOW = "Yellow"
    RED = "Red"
    GREY = "Grey"


class HealthPoll(BaseModel):
    state: HealthState
    taken_at: datetime = Field(default_factory=_utcnow)


class CloudApplication(BaseModel):
    name: str


class CloudEnvironment(BaseModel):
    name: str
    application_name: str
    environment_id: Optional[str] = None
    url: Optional[str] = None


class CloudApplicationVersion(BaseModel):
    application_name: str
    label: str
    storage_container: str
    artifact_key: str
