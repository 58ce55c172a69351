"""
High-level orchestration of the IIS → cloud hosting migration.

This module defines :class:`MigrationRunContext`, the explicit run-scoped
state (run id, run directory, log file, session store) handed to every
stage, and :class:`IisMigrationTool`, which ties the extractors, the
readiness evaluator, the connection string resolver, the bundle transformer
and the cloud deployer into a complete pipeline.

Configuration is supplied via a JSON file path or directly as a
dictionary.  Missing keys are filled with defaults (and, for credentials
and tool paths, environment variables) so that the rest of the code can
index the configuration without ``KeyError``.
"""

from __future__ import annotations

import json
import os
import re
import secrets
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .assessment.readiness import ReadinessSettings, evaluate_readiness
from .connection_strings.resolver import ConnectionStringResolver
from .extractors.iis_config import SiteConfig, extract_site_config, find_web_config
from .extractors.package_exporter import DEFAULT_MSDEPLOY_PATH, MsDeployExporter, PackageExporter
from .migrators.control_plane import BeanstalkControlPlane, CloudControlPlane
from .migrators.deployment import CloudDeployer, DeploymentSettings
from .models.records import MigrationRun, ReadinessReport, RunStatus
from .packaging.bundle import archive_bundle, build_bundle, PAYLOAD_FILE
from .packaging.certificates import scrub_certificates
from .utils.errors import (
    MigrationAborted,
    MigrationError,
    PreconditionError,
    ReportGenerationError,
    report_error,
    report_ok,
)
from .utils.session_store import SessionStore

DEFAULT_CONFIG_FILE = "config/migration_config.json"
DEFAULT_APPLICATION_HOST_CONFIG = r"C:\Windows\System32\inetsrv\config\applicationHost.config"
DEFAULT_SOLUTION_STACK = "64bit Windows Server 2019 v2.16.0 running IIS 10.0"

READINESS_ENTRY = "readiness_report"
CONNECTION_STRINGS_ENTRY = "connection_strings"
YES_ANSWERS = ("y", "yes")


def load_config(config: Optional[Dict[str, Any]] = None, *, config_file: Optional[str] = None) -> Dict[str, Any]:
    if config_file and os.path.exists(config_file):
        with open(config_file, "r", encoding="utf-8") as f:
            config = json.load(f)
    elif config is None:
        config = {}

    # Ensure essential keys exist to prevent KeyErrors
    config.setdefault("site", {})
    config["site"].setdefault("name", "")
    config["site"].setdefault("application_host_config", DEFAULT_APPLICATION_HOST_CONFIG)
    config["site"].setdefault("content_root", "")

    config.setdefault("cloud", {})
    config["cloud"].setdefault("region", os.getenv("AWS_REGION", ""))
    config["cloud"].setdefault("profile", os.getenv("AWS_PROFILE", ""))
    config["cloud"].setdefault("application_name", "")
    config["cloud"].setdefault("environment_name", "")
    config["cloud"].setdefault("solution_stack", DEFAULT_SOLUTION_STACK)
    config["cloud"].setdefault("instance_type", "t3.medium")
    config["cloud"].setdefault("storage_container_prefix", "iis-migration")

    config.setdefault("migration", {})
    config["migration"].setdefault("workspace", "migration-runs")
    config["migration"].setdefault("block_on_incompatibility", False)
    config["migration"].setdefault("delete_storage_after_deploy", True)
    config["migration"].setdefault("msdeploy_path", os.getenv("MSDEPLOY_PATH", ""))
    config["migration"].setdefault("max_applications_per_pool", None)
    config["migration"].setdefault("allow_privileged_identity", True)
    config["migration"].setdefault("supported_runtime_versions", ["", "v2.0", "v4.0"])
    config["migration"].setdefault("update_window_seconds", 600)
    config["migration"].setdefault("poll_interval_seconds", 30)
    config["migration"].setdefault("poll_timeout_seconds", 1800)
    config["migration"].setdefault("smoke_check", True)
    config["migration"].setdefault("verbose", False)
    return config


def default_application_name(site_name: str) -> str:
    name = re.sub(r"[^A-Za-z0-9]+", "-", site_name or "").strip("-")
    if len(name) < 4:
        name = f"{name}-app".strip("-")
    return name[:40].rstrip("-")


class MigrationRunContext:
    """
    Run-scoped state threaded through every stage.

    A context owns ``<workspace>/<run_id>``; it is created exactly once per
    run and refuses to reuse an existing run directory.
    """

    def __init__(self, run: MigrationRun, run_dir: str, *, verbose: bool = False) -> None:
        self.run = run
        self.run_dir = run_dir
        self.verbose = verbose
        self.session = SessionStore(run_dir)

    @classmethod
    def create(cls, workspace: str, run_id: Optional[str] = None, *, verbose: bool = False) -> "MigrationRunContext":
        run_id = run_id or datetime.now().strftime("%Y%m%d-%H%M%S-") + uuid.uuid4().hex[:6]
        run_dir = os.path.join(workspace, run_id)
        if os.path.exists(run_dir):
            raise PreconditionError(f"Migration run '{run_id}' already exists in {workspace}")
        os.makedirs(run_dir)
        context = cls(MigrationRun(run_id=run_id, workspace=os.path.abspath(workspace)), run_dir, verbose=verbose)
        context.save_run()
        report_ok(run_dir, "RUN_CREATED", {"run_id": run_id})
        return context

    @property
    def run_id(self) -> str:
        return self.run.run_id

    def path(self, *parts: str) -> str:
        return os.path.join(self.run_dir, *parts)

    @property
    def log_file(self) -> str:
        return self.path("logs", "migration.log")

    def log_message(self, message: str, level: str = "INFO") -> None:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        log_entry = f"[{timestamp}] {level}: {message}"
        if level != "DEBUG" or self.verbose:
            print(log_entry)
        os.makedirs(os.path.dirname(self.log_file), exist_ok=True)
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(log_entry + "\n")

    def save_run(self) -> None:
        with open(self.path("run.json"), "w", encoding="utf-8") as f:
            f.write(self.run.model_dump_json(indent=2))

    def set_status(self, status: RunStatus) -> None:
        self.run.status = status
        self.save_run()
        self.log_message(f"Run status: {status.value}", level="DEBUG")

    def make_dir(self, *parts: str) -> str:
        path = self.path(*parts)
        if os.path.exists(path) and os.listdir(path):
            raise PreconditionError(f"Refusing to reuse non-empty directory: {path}")
        os.makedirs(path, exist_ok=True)
        return path


class IisMigrationTool:
    """
    Encapsulates the configuration and collaborators of a migration and
    runs the stages in order for one site.  The collaborators (exporter,
    control plane, verifier, prompt, sleep and clock) can be injected;
    otherwise the real implementations are built from configuration.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        *,
        config_file: Optional[str] = None,
        prompt: Callable[[str], str] = input,
        exporter: Optional[PackageExporter] = None,
        control_plane: Optional[CloudControlPlane] = None,
        verifier=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = load_config(config, config_file=config_file)
        self.prompt = prompt
        self.exporter = exporter
        self.control_plane = control_plane
        self.verifier = verifier
        self.sleep = sleep
        self.clock = clock
        self.context: Optional[MigrationRunContext] = None

    def log_message(self, message: str, level: str = "INFO") -> None:
        if self.context is not None:
            self.context.log_message(message, level)
        elif level != "DEBUG" or self.config["migration"]["verbose"]:
            print(f"[{level}] {message}")

    def confirm(self, question: str) -> bool:
        return self.prompt(f"{question} [y/N]: ").strip().lower() in YES_ANSWERS

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def start_run(self, run_id: Optional[str] = None) -> MigrationRunContext:
        self.context = MigrationRunContext.create(
            self.config["migration"]["workspace"], run_id, verbose=self.config["migration"]["verbose"]
        )
        self.context.run.site_name = self.config["site"]["name"] or None
        self.context.save_run()
        self.log_message(f"Starting migration run {self.context.run_id}")
        return self.context

    def load_site(self) -> SiteConfig:
        site_name = self.config["site"]["name"]
        if not site_name:
            raise PreconditionError("No site name configured ('site.name')")
        return extract_site_config(self.config["site"]["application_host_config"], site_name)

    def readiness_settings(self) -> ReadinessSettings:
        migration = self.config["migration"]
        return ReadinessSettings(
            max_applications_per_pool=migration["max_applications_per_pool"],
            allow_privileged_identity=migration["allow_privileged_identity"],
            supported_runtime_versions=tuple(migration["supported_runtime_versions"]),
        )

    def assess(self, site: SiteConfig) -> ReadinessReport:
        ctx = self.context
        ctx.set_status(RunStatus.ASSESSING)
        try:
            report = evaluate_readiness(site, self.readiness_settings())
        except ReportGenerationError as e:
            report_error(ctx.run_dir, "READINESS_FAILED", e)
            raise
        ctx.session.save(READINESS_ENTRY, report)
        with open(ctx.path("readiness_report.txt"), "w", encoding="utf-8") as f:
            f.write(report.render() + "\n")
        report_ok(
            ctx.run_dir,
            "READINESS_REPORT",
            {"site": site.name, "failed_checks": [c.name for c in report.failed_checks]},
        )
        ctx.set_status(RunStatus.ASSESSED)
        return report

    def gate_on_readiness(self, report: ReadinessReport) -> None:
        if not report.has_incompatibility:
            return
        names = ", ".join(c.name for c in report.failed_checks)
        self.log_message(f"Readiness checks failed: {names}", level="WARNING")
        if self.config["migration"]["block_on_incompatibility"]:
            raise MigrationAborted(f"Incompatibilities found ({names}) and block_on_incompatibility is set")
        if not self.confirm("The site has incompatibilities. Continue the migration anyway?"):
            raise MigrationAborted("Migration stopped after failed readiness checks")

    def content_root(self, site: SiteConfig) -> str:
        root = self.config["site"]["content_root"] or site.physical_path
        if not root or not os.path.isdir(root):
            raise PreconditionError(f"Site content root not found: {root!r}")
        return root

    def resolve_connection_strings(self, site: SiteConfig) -> None:
        ctx = self.context
        ctx.set_status(RunStatus.RESOLVING)
        root = self.content_root(site)
        resolver = ConnectionStringResolver(
            root,
            verifier=self.verifier,
            prompt=self.prompt,
            log=self.log_message,
            backup_dir=ctx.path("backups"),
            web_config=find_web_config(root),
        )
        result = resolver.resolve()
        ctx.session.save(CONNECTION_STRINGS_ENTRY, result)
        for replacement in result.replacements:
            code = "CONNECTION_STRING_REPLACED" if replacement.new else "CONNECTION_STRING_MANUAL"
            report_ok(ctx.run_dir, code, {"files": replacement.files})

    def package(self, site: SiteConfig) -> str:
        ctx = self.context
        ctx.set_status(RunStatus.PACKAGING)
        secret = secrets.token_urlsafe(24)

        exporter = self.exporter or MsDeployExporter(
            self.config["migration"]["msdeploy_path"] or DEFAULT_MSDEPLOY_PATH
        )
        snapshot_dir = ctx.make_dir("snapshot")
        archive = exporter.export(site.name, snapshot_dir, secret)
        report_ok(ctx.run_dir, "EXPORT", {"archive": archive})

        bundle_dir = ctx.make_dir("bundle")
        build_bundle(snapshot_dir, bundle_dir, site.name, secret, log=self.log_message)
        removed = scrub_certificates(os.path.join(bundle_dir, PAYLOAD_FILE))
        total = sum(removed.values())
        self.log_message(f"Removed {total} certificate node(s) from the payload")
        report_ok(ctx.run_dir, "CERTIFICATES_SCRUBBED", {"removed": removed})

        bundle_archive = archive_bundle(bundle_dir, ctx.path("bundle.zip"))
        report_ok(ctx.run_dir, "BUNDLE_BUILT", {"archive": bundle_archive})
        return bundle_archive

    def deployment_settings(self, site: SiteConfig) -> DeploymentSettings:
        cloud = self.config["cloud"]
        migration = self.config["migration"]
        application_name = cloud["application_name"] or default_application_name(site.name)
        return DeploymentSettings(
            application_name=application_name,
            environment_name=cloud["environment_name"] or f"{application_name[:36]}-env",
            solution_stack=cloud["solution_stack"],
            instance_type=cloud["instance_type"],
            storage_container_prefix=cloud["storage_container_prefix"],
            delete_storage_after_deploy=migration["delete_storage_after_deploy"],
            update_window_seconds=migration["update_window_seconds"],
            poll_interval_seconds=migration["poll_interval_seconds"],
            poll_timeout_seconds=migration["poll_timeout_seconds"],
            smoke_check=migration["smoke_check"],
        )

    def deploy(self, site: SiteConfig, bundle_archive: str) -> bool:
        ctx = self.context
        ctx.set_status(RunStatus.DEPLOYING)
        control_plane = self.control_plane or BeanstalkControlPlane(
            region=self.config["cloud"]["region"], profile=self.config["cloud"]["profile"]
        )
        deployer = CloudDeployer(
            control_plane,
            self.deployment_settings(site),
            run_id=ctx.run_id,
            prompt=self.prompt,
            log=self.log_message,
            sleep=self.sleep,
            clock=self.clock,
        )
        outcome = deployer.deploy(bundle_archive)
        if outcome.succeeded:
            report_ok(ctx.run_dir, "DEPLOY_SUCCEEDED", {"url": outcome.url, "smoke_status": outcome.smoke_status})
        else:
            report_error(ctx.run_dir, "DEPLOY_FAILED", extra={"reason": outcome.reason})
        return outcome.succeeded

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(self, *, report_only: bool = False, run_id: Optional[str] = None) -> int:
        """
        Run the migration and return the process exit code.

        :param report_only: Stop after the readiness report, before any
            mutation or cloud interaction.
        :param run_id: Identifier of the run; generated when omitted.
        :return: ``0`` on success, ``1`` on any fatal condition.
        """
        try:
            self.start_run(run_id)
        except MigrationError as e:
            self.log_message(str(e), level="ERROR")
            return 1

        ctx = self.context
        try:
            site = self.load_site()
            try:
                report = self.assess(site)
            except ReportGenerationError as e:
                self.log_message(f"Readiness report failed, migratability is unknown: {e}", level="ERROR")
                if report_only or not self.confirm("Continue without a readiness report?"):
                    raise
            else:
                print(report.render())
                if report_only:
                    self.log_message("Report-only run finished.")
                    return 0
                self.gate_on_readiness(report)

            self.resolve_connection_strings(site)
            bundle_archive = self.package(site)
            if not self.deploy(site, bundle_archive):
                ctx.set_status(RunStatus.FAILED)
                return 1
        except MigrationAborted as e:
            self.log_message(str(e), level="WARNING")
            ctx.set_status(RunStatus.ABORTED)
            return 1
        except MigrationError as e:
            self.log_message(str(e), level="ERROR")
            report_error(ctx.run_dir, "RUN_FAILED", e)
            ctx.set_status(RunStatus.FAILED)
            return 1
        except Exception as e:
            self.log_message(f"Unexpected error: {e}", level="ERROR")
            report_error(ctx.run_dir, "RUN_FAILED", e)
            ctx.set_status(RunStatus.FAILED)
            return 1

        ctx.set_status(RunStatus.SUCCEEDED)
        self.log_message("Migration process finished.")
        return 0
