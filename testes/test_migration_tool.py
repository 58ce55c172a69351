import json
import os
import sys
import zipfile

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from iis_migrator.extractors.package_exporter import PackageExporter
from iis_migrator.migration_tool import IisMigrationTool, MigrationRunContext, default_application_name, load_config
from iis_migrator.migrators.control_plane import CloudControlPlane
from iis_migrator.models.records import (
    CloudApplication,
    CloudApplicationVersion,
    CloudEnvironment,
    ConnectionStringReplacementSet,
    HealthState,
    ReadinessReport,
)
from iis_migrator.utils.errors import PreconditionError, ReportGenerationError

OLD = "Data Source=db01;Initial Catalog=Shop;User ID=sa;Password=pw"
NEW = "Data Source=rds.example.com;Initial Catalog=Shop;User ID=app;Password=n3w"


def application_host(content_root, bindings):
    rows = "\n".join(f'<binding protocol="{p}" bindingInformation="{b}" />' for p, b in bindings)
    return f"""<configuration>
  <system.applicationHost>
    <applicationPools><add name="ShopPool" managedRuntimeVersion="v4.0" /></applicationPools>
    <sites>
      <site name="Shop" id="1">
        <application path="/" applicationPool="ShopPool">
          <virtualDirectory path="/" physicalPath="{content_root}" />
        </application>
        <bindings>{rows}</bindings>
      </site>
    </sites>
  </system.applicationHost>
</configuration>
"""


class FakeExporter(PackageExporter):
    def __init__(self):
        self.secrets = []

    def _export(self, site_name, destination, secret):
        self.secrets.append(secret)
        archive = os.path.join(destination, "site.zip")
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("archive.xml", '<sitemanifest><httpCert path="0.0.0.0:443" /></sitemanifest>')
        return archive


class FakeControlPlane(CloudControlPlane):
    def __init__(self):
        self.calls = []

    def create_application(self, name):
        self.calls.append("create_application")
        return CloudApplication(name=name)

    def create_environment(self, application_name, environment_name, *, solution_stack, instance_type):
        self.calls.append("create_environment")
        return CloudEnvironment(name=environment_name, application_name=application_name)

    def create_storage_container(self, name):
        return name

    def get_storage_container_grants(self, name):
        return []

    def upload_artifact(self, container, key, path):
        self.calls.append("upload_artifact")
        with zipfile.ZipFile(path) as zf:
            self.uploaded_names = zf.namelist()

    def delete_storage_container(self, name):
        self.calls.append("delete_storage_container")

    def create_application_version(self, application_name, label, container, key):
        return CloudApplicationVersion(
            application_name=application_name, label=label, storage_container=container, artifact_key=key
        )

    def update_environment(self, environment_name, version_label):
        self.calls.append("update_environment")

    def get_environment_health(self, environment_name):
        return HealthState.GREEN

    def get_environment_url(self, environment_name):
        return "shop.example.com"


class AcceptAll:
    def verify(self, connection_string):
        pass


class ScriptedPrompt:
    def __init__(self, answers):
        self.answers = list(answers)

    def __call__(self, question):
        if not self.answers:
            pytest.fail(f"unexpected prompt: {question}")
        return self.answers.pop(0)


@pytest.fixture
def site(tmp_path):
    content = tmp_path / "wwwroot"
    content.mkdir()
    (content / "web.config").write_text(
        f'<configuration><connectionStrings><add name="Shop" connectionString="{OLD}" /></connectionStrings></configuration>\n',
        encoding="utf-8",
    )
    (content / "default.aspx").write_text("<html></html>", encoding="utf-8")
    return content


def make_config(tmp_path, content, bindings=(("http", "*:80:"),)):
    host = tmp_path / "applicationHost.config"
    host.write_text(application_host(str(content), bindings), encoding="utf-8")
    return {
        "site": {"name": "Shop", "application_host_config": str(host)},
        "migration": {"workspace": str(tmp_path / "runs"), "smoke_check": False},
    }


def run_dir(tmp_path, run_id):
    return tmp_path / "runs" / run_id


def test_load_config_fills_defaults(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "eu-central-1")
    config = load_config({"site": {"name": "Shop"}})
    assert config["site"]["name"] == "Shop"
    assert config["cloud"]["region"] == "eu-central-1"
    assert config["migration"]["poll_interval_seconds"] == 30
    assert config["migration"]["block_on_incompatibility"] is False


def test_default_application_name():
    assert default_application_name("Default Web Site") == "Default-Web-Site"
    assert default_application_name("A") == "A-app"


def test_report_only_persists_report_and_changes_nothing(tmp_path, site):
    config = make_config(tmp_path, site, bindings=[("http", "*:80:"), ("http", "*:8080:")])
    exporter = FakeExporter()
    tool = IisMigrationTool(config, prompt=ScriptedPrompt([]), exporter=exporter, control_plane=FakeControlPlane())

    assert tool.run(report_only=True, run_id="report") == 0

    directory = run_dir(tmp_path, "report")
    report = tool.context.session.load("readiness_report", ReadinessReport)
    failed = [c.name for c in report.failed_checks]
    assert failed == ["BindingCardinality"]
    assert "[FAIL] BindingCardinality" in (directory / "readiness_report.txt").read_text(encoding="utf-8")
    assert exporter.secrets == []
    assert OLD in (site / "web.config").read_text(encoding="utf-8")
    assert not (directory / "snapshot").exists()


def test_reused_run_id_is_rejected(tmp_path, site):
    config = make_config(tmp_path, site)
    assert IisMigrationTool(config, prompt=ScriptedPrompt([])).run(report_only=True, run_id="same") == 0
    assert IisMigrationTool(config, prompt=ScriptedPrompt([])).run(report_only=True, run_id="same") == 1


def test_context_refuses_existing_run(tmp_path):
    MigrationRunContext.create(str(tmp_path), "r1")
    with pytest.raises(PreconditionError):
        MigrationRunContext.create(str(tmp_path), "r1")


def test_unknown_site_fails_the_run(tmp_path, site):
    config = make_config(tmp_path, site)
    config["site"]["name"] = "Missing"
    tool = IisMigrationTool(config, prompt=ScriptedPrompt([]))
    assert tool.run(report_only=True, run_id="missing") == 1
    run = json.loads((run_dir(tmp_path, "missing") / "run.json").read_text(encoding="utf-8"))
    assert run["status"] == "failed"


def test_incompatibility_blocks_when_configured(tmp_path, site):
    config = make_config(tmp_path, site, bindings=[("http", "*:80:"), ("net.tcp", "808:*")])
    config["migration"]["block_on_incompatibility"] = True
    control = FakeControlPlane()
    tool = IisMigrationTool(config, prompt=ScriptedPrompt([]), exporter=FakeExporter(), control_plane=control)

    assert tool.run(run_id="blocked") == 1
    assert control.calls == []
    run = json.loads((run_dir(tmp_path, "blocked") / "run.json").read_text(encoding="utf-8"))
    assert run["status"] == "aborted"


def test_operator_can_decline_after_incompatibility(tmp_path, site):
    config = make_config(tmp_path, site, bindings=[("http", "*:80:"), ("net.tcp", "808:*")])
    tool = IisMigrationTool(config, prompt=ScriptedPrompt(["n"]), exporter=FakeExporter(), control_plane=FakeControlPlane())
    assert tool.run(run_id="declined") == 1


def test_full_run(tmp_path, site):
    config = make_config(tmp_path, site)
    exporter = FakeExporter()
    control = FakeControlPlane()
    tool = IisMigrationTool(
        config,
        prompt=ScriptedPrompt(["1", "", NEW]),
        exporter=exporter,
        control_plane=control,
        verifier=AcceptAll(),
        sleep=lambda s: None,
        clock=lambda: 0.0,
    )

    assert tool.run(run_id="full") == 0

    directory = run_dir(tmp_path, "full")
    assert NEW in (site / "web.config").read_text(encoding="utf-8")
    assert OLD in (directory / "backups" / "web.config").read_text(encoding="utf-8")
    replacements = tool.context.session.load("connection_strings", ConnectionStringReplacementSet)
    assert replacements.replacements[0].new == NEW

    assert (directory / "bundle.zip").exists()
    assert "extension-points/" in control.uploaded_names
    with zipfile.ZipFile(directory / "bundle" / "payload.zip") as zf:
        assert b"httpCert" not in zf.read("archive.xml")
    install = (directory / "bundle" / "scripts" / "install").read_text(encoding="utf-8")
    assert exporter.secrets[0] in install

    assert control.calls == [
        "create_application",
        "create_environment",
        "upload_artifact",
        "update_environment",
        "delete_storage_container",
    ]
    run = json.loads((directory / "run.json").read_text(encoding="utf-8"))
    assert run["status"] == "succeeded"
    events = (directory / "logs" / "events.jsonl").read_text(encoding="utf-8")
    assert "DEPLOY_SUCCEEDED" in events


def broken_readiness(site, settings):
    raise ReportGenerationError("pool 'ShopPool' could not be read")


def test_report_failure_in_report_only_mode_exits_1(tmp_path, site, monkeypatch):
    monkeypatch.setattr("iis_migrator.migration_tool.evaluate_readiness", broken_readiness)
    exporter = FakeExporter()
    tool = IisMigrationTool(make_config(tmp_path, site), prompt=ScriptedPrompt([]), exporter=exporter)

    assert tool.run(report_only=True, run_id="no-report") == 1

    directory = run_dir(tmp_path, "no-report")
    run = json.loads((directory / "run.json").read_text(encoding="utf-8"))
    assert run["status"] == "failed"
    assert "READINESS_FAILED" in (directory / "logs" / "errors.jsonl").read_text(encoding="utf-8")
    assert exporter.secrets == []


def test_operator_declines_to_continue_without_report(tmp_path, site, monkeypatch):
    monkeypatch.setattr("iis_migrator.migration_tool.evaluate_readiness", broken_readiness)
    exporter = FakeExporter()
    control = FakeControlPlane()
    tool = IisMigrationTool(make_config(tmp_path, site), prompt=ScriptedPrompt(["n"]), exporter=exporter, control_plane=control)

    assert tool.run(run_id="declined-report") == 1

    run = json.loads((run_dir(tmp_path, "declined-report") / "run.json").read_text(encoding="utf-8"))
    assert run["status"] == "failed"
    assert exporter.secrets == []
    assert control.calls == []
    assert OLD in (site / "web.config").read_text(encoding="utf-8")


def test_operator_continues_without_report(tmp_path, site, monkeypatch):
    monkeypatch.setattr("iis_migrator.migration_tool.evaluate_readiness", broken_readiness)
    exporter = FakeExporter()
    control = FakeControlPlane()
    tool = IisMigrationTool(
        make_config(tmp_path, site),
        prompt=ScriptedPrompt(["y", "1", "", NEW]),
        exporter=exporter,
        control_plane=control,
        verifier=AcceptAll(),
        sleep=lambda s: None,
        clock=lambda: 0.0,
    )

    assert tool.run(run_id="no-report-full") == 0

    directory = run_dir(tmp_path, "no-report-full")
    assert not tool.context.session.exists("readiness_report")
    assert NEW in (site / "web.config").read_text(encoding="utf-8")
    assert len(exporter.secrets) == 1
    assert (directory / "bundle.zip").exists()
    run = json.loads((directory / "run.json").read_text(encoding="utf-8"))
    assert run["status"] == "succeeded"
