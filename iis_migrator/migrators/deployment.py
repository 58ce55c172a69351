"""
Deployment of a bundle into the cloud hosting platform.

:class:`CloudDeployer` walks through::

    ApplicationCreated → EnvironmentRequested → ArtifactUploaded →
    VersionRegistered → EnvironmentUpdating → Polling → {Succeeded, Failed}

Resource creation goes through :func:`run_with_retries`; a failure there is
usually a name collision, so the operator is asked for a new name on every
retry.  The environment update and the health polling are time boxed and use
the injected ``sleep``/``clock`` so that tests never wait.
"""

from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..models.records import (
    CloudApplication,
    CloudApplicationVersion,
    CloudEnvironment,
    HealthPoll,
    HealthState,
)
from ..utils.errors import FatalError, PreconditionError, PublicStorageError
from ..utils.retry import UNTIL_SUCCESS, run_with_retries
from .control_plane import CloudControlPlane, Grant
from .smoke_check import check_site_responds

PUBLIC_GRANTEES = (
    "http://acs.amazonaws.com/groups/global/AllUsers",
    "http://acs.amazonaws.com/groups/global/AuthenticatedUsers",
)
PUBLIC_PERMISSIONS = ("READ", "READ_ACP", "WRITE", "WRITE_ACP", "FULL_CONTROL")

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]{2,38}[A-Za-z0-9]$")


class DeploymentState(str, Enum):
    PENDING = "Pending"
    APPLICATION_CREATED = "ApplicationCreated"
    ENVIRONMENT_REQUESTED = "EnvironmentRequested"
    ARTIFACT_UPLOADED = "ArtifactUploaded"
    VERSION_REGISTERED = "VersionRegistered"
    ENVIRONMENT_UPDATING = "EnvironmentUpdating"
    POLLING = "Polling"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass
class DeploymentSettings:
    application_name: str
    environment_name: str
    solution_stack: str
    instance_type: str = "t3.medium"
    storage_container_prefix: str = "iis-migration"
    delete_storage_after_deploy: bool = True
    update_window_seconds: float = 600
    update_retry_interval_seconds: float = 30
    poll_interval_seconds: float = 30
    poll_timeout_seconds: float = 1800
    required_consecutive_green: int = 2
    cloud_call_retries: int = 3
    smoke_check: bool = True


@dataclass
class ConvergenceResult:
    state: DeploymentState
    reason: str
    polls: List[HealthPoll] = field(default_factory=list)
    timed_out: bool = False


@dataclass
class DeploymentOutcome:
    state: DeploymentState
    reason: str
    application: Optional[CloudApplication] = None
    environment: Optional[CloudEnvironment] = None
    version: Optional[CloudApplicationVersion] = None
    url: Optional[str] = None
    smoke_status: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.state == DeploymentState.SUCCEEDED


def _print_log(message: str, level: str = "INFO") -> None:
    print(f"[{level}] {message}")


def _print_progress(marker: str) -> None:
    print(marker, end="", flush=True)


def is_public_grant(grant: Grant) -> bool:
    return grant.get("grantee") in PUBLIC_GRANTEES and grant.get("permission") in PUBLIC_PERMISSIONS


def storage_container_name(prefix: str, application_name: str, run_id: str) -> str:
    """Build a bucket-safe name: lower case, digits and hyphens, at most 63 chars."""
    raw = f"{prefix}-{application_name}-{run_id}".lower()
    name = re.sub(r"[^a-z0-9-]+", "-", raw)
    name = re.sub(r"-{2,}", "-", name).strip("-")
    return name[:63].rstrip("-")


def validate_resource_name(name: str) -> str:
    name = (name or "").strip()
    if not _NAME_RE.match(name):
        raise ValueError(
            f"'{name}' is not a valid name: use 4 to 40 letters, digits or hyphens, "
            "starting and ending with a letter or digit"
        )
    return name


def poll_until_converged(
    sample: Callable[[], HealthState],
    *,
    interval: float,
    timeout: float,
    required_green: int = 2,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    log: Callable[..., None] = _print_log,
) -> ConvergenceResult:
    """
    Sample health until it converges or ``timeout`` seconds have passed.

    ``required_green`` consecutive Green samples mean success; a single Yellow
    or Red sample means failure; Grey keeps waiting and resets the Green run.
    """
    deadline = clock() + timeout
    polls: List[HealthPoll] = []
    consecutive_green = 0
    while True:
        state = sample()
        polls.append(HealthPoll(state=state))
        log(f"Environment health: {state.value}", "DEBUG")
        if state in (HealthState.YELLOW, HealthState.RED):
            return ConvergenceResult(DeploymentState.FAILED, f"Environment health turned {state.value}", polls)
        if state == HealthState.GREEN:
            consecutive_green += 1
            if consecutive_green >= required_green:
                return ConvergenceResult(DeploymentState.SUCCEEDED, "Environment is healthy", polls)
        else:
            consecutive_green = 0
        if clock() + interval > deadline:
            return ConvergenceResult(
                DeploymentState.FAILED,
                f"Environment did not become healthy within {int(timeout)} seconds",
                polls,
                timed_out=True,
            )
        sleep(interval)


class CloudDeployer:
    def __init__(
        self,
        control_plane: CloudControlPlane,
        settings: DeploymentSettings,
        *,
        run_id: str,
        prompt: Callable[[str], str] = input,
        log: Callable[..., None] = _print_log,
        progress: Callable[[str], None] = _print_progress,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        smoke_checker: Callable[[str], Optional[int]] = check_site_responds,
    ) -> None:
        self.control = control_plane
        self.settings = settings
        self.run_id = run_id
        self.prompt = prompt
        self.log = log
        self.progress = progress
        self.sleep = sleep
        self.clock = clock
        self.smoke_checker = smoke_checker

        self.state = DeploymentState.PENDING
        self.application: Optional[CloudApplication] = None
        self.environment: Optional[CloudEnvironment] = None
        self.version: Optional[CloudApplicationVersion] = None
        self.storage_container: Optional[str] = None

    # ------------------------------------------------------------------
    # Resource creation
    # ------------------------------------------------------------------
    def _ask_name(self, kind: str, attempt: int, current: str) -> str:
        if attempt == 0:
            return validate_resource_name(current)
        return validate_resource_name(self.prompt(f"Enter a different {kind} name: "))

    def create_application(self) -> CloudApplication:
        def attempt(n: int) -> CloudApplication:
            name = self._ask_name("application", n, self.settings.application_name)
            app = self.control.create_application(name)
            self.settings.application_name = name
            return app

        self.application = run_with_retries(
            attempt, max_retries=UNTIL_SUCCESS, description="Creating application", log=self.log
        )
        self.state = DeploymentState.APPLICATION_CREATED
        self.log(f"Application '{self.application.name}' created")
        return self.application

    def create_environment(self) -> CloudEnvironment:
        if self.application is None:
            raise PreconditionError("The application must be created before its environment")

        def attempt(n: int) -> CloudEnvironment:
            name = self._ask_name("environment", n, self.settings.environment_name)
            env = self.control.create_environment(
                self.application.name,
                name,
                solution_stack=self.settings.solution_stack,
                instance_type=self.settings.instance_type,
            )
            self.settings.environment_name = name
            return env

        self.environment = run_with_retries(
            attempt, max_retries=UNTIL_SUCCESS, description="Creating environment", log=self.log
        )
        self.state = DeploymentState.ENVIRONMENT_REQUESTED
        self.log(f"Environment '{self.environment.name}' requested")
        return self.environment

    # ------------------------------------------------------------------
    # Upload and version
    # ------------------------------------------------------------------
    def upload_artifact(self, bundle_archive: str) -> str:
        if not os.path.isfile(bundle_archive):
            raise PreconditionError(f"Bundle archive not found: {bundle_archive}")
        if self.application is None:
            raise PreconditionError("The application must be created before uploading")

        name = storage_container_name(self.settings.storage_container_prefix, self.application.name, self.run_id)
        self.storage_container = run_with_retries(
            lambda n: self.control.create_storage_container(name),
            max_retries=self.settings.cloud_call_retries,
            description="Creating storage container",
            log=self.log,
        )
        grants = self.control.get_storage_container_grants(name)
        public = [g for g in grants if is_public_grant(g)]
        if public:
            self.log(f"Storage container {name} is publicly accessible, deleting it", "ERROR")
            self.control.delete_storage_container(name)
            self.storage_container = None
            raise PublicStorageError(f"Storage container {name} grants public access: {public}")

        key = f"{self.run_id}/{os.path.basename(bundle_archive)}"
        run_with_retries(
            lambda n: self.control.upload_artifact(name, key, bundle_archive),
            max_retries=self.settings.cloud_call_retries,
            description="Uploading bundle",
            log=self.log,
        )
        self.state = DeploymentState.ARTIFACT_UPLOADED
        self.log(f"Bundle uploaded to {name}/{key}")
        return key

    def register_version(self, artifact_key: str) -> CloudApplicationVersion:
        if self.application is None or self.storage_container is None:
            raise PreconditionError("The bundle must be uploaded before registering a version")
        label = f"{self.application.name}-{self.run_id}"
        self.version = run_with_retries(
            lambda n: self.control.create_application_version(
                self.application.name, label, self.storage_container, artifact_key
            ),
            max_retries=self.settings.cloud_call_retries,
            description="Registering application version",
            log=self.log,
        )
        self.state = DeploymentState.VERSION_REGISTERED
        self.log(f"Application version '{label}' registered")
        return self.version

    # ------------------------------------------------------------------
    # Update and convergence
    # ------------------------------------------------------------------
    def update_environment(self) -> bool:
        """
        Point the environment at the new version, retrying while the
        environment is still launching.

        :return: ``True`` if the update was accepted inside the window.  A
            ``False`` is not fatal; polling reveals the real outcome.
        """
        if self.environment is None or self.version is None:
            raise PreconditionError("Environment and version are required before updating")
        self.state = DeploymentState.ENVIRONMENT_UPDATING
        deadline = self.clock() + self.settings.update_window_seconds
        self.log(f"Deploying version '{self.version.label}' to '{self.environment.name}'")
        while True:
            try:
                self.control.update_environment(self.environment.name, self.version.label)
                self.progress("\n")
                self.log("Environment update accepted")
                return True
            except FatalError:
                raise
            except Exception as e:
                self.log(f"Environment update not accepted yet: {e}", "DEBUG")
                if self.clock() + self.settings.update_retry_interval_seconds > deadline:
                    self.progress("\n")
                    self.log(
                        f"Environment update was not accepted within {int(self.settings.update_window_seconds)} seconds",
                        "WARNING",
                    )
                    return False
                self.progress(".")
                self.sleep(self.settings.update_retry_interval_seconds)

    def _sample_health(self) -> HealthState:
        return run_with_retries(
            lambda n: self.control.get_environment_health(self.environment.name),
            max_retries=self.settings.cloud_call_retries,
            description="Reading environment health",
            log=self.log,
        )

    def poll_health(self) -> ConvergenceResult:
        if self.environment is None:
            raise PreconditionError("No environment to poll")
        self.state = DeploymentState.POLLING
        result = poll_until_converged(
            self._sample_health,
            interval=self.settings.poll_interval_seconds,
            timeout=self.settings.poll_timeout_seconds,
            required_green=self.settings.required_consecutive_green,
            sleep=self.sleep,
            clock=self.clock,
            log=self.log,
        )
        self.state = result.state
        return result

    def cleanup(self) -> None:
        if not self.storage_container:
            return
        if not self.settings.delete_storage_after_deploy:
            self.log(f"Storage container {self.storage_container} kept for inspection")
            return
        self.control.delete_storage_container(self.storage_container)
        self.log(f"Storage container {self.storage_container} deleted")
        self.storage_container = None

    def deploy(self, bundle_archive: str) -> DeploymentOutcome:
        self.create_application()
        self.create_environment()
        try:
            key = self.upload_artifact(bundle_archive)
            self.register_version(key)
            self.update_environment()
            result = self.poll_health()
        finally:
            self.cleanup()

        outcome = DeploymentOutcome(
            state=result.state,
            reason=result.reason,
            application=self.application,
            environment=self.environment,
            version=self.version,
        )
        if result.state != DeploymentState.SUCCEEDED:
            self.log(
                f"Deployment failed: {result.reason}. Inspect environment '{self.environment.name}' "
                "in the cloud console; no automatic redeploy is attempted.",
                "ERROR",
            )
            return outcome

        outcome.url = self.control.get_environment_url(self.environment.name)
        self.log(f"Deployment succeeded: {outcome.url}")
        if self.settings.smoke_check and outcome.url:
            outcome.smoke_status = self.smoke_checker(outcome.url)
            self.log(f"Site answered with status {outcome.smoke_status}")
        return outcome
