import os
import subprocess
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from iis_migrator.extractors.package_exporter import MsDeployExporter
from iis_migrator.utils.errors import ExportError, PreconditionError

SECRET = "one-time-secret"


def test_command_line_and_archive(tmp_path):
    commands = []

    def runner(command, **kwargs):
        commands.append(command)
        with open(os.path.join(str(tmp_path), "site.zip"), "wb") as f:
            f.write(b"PK")
        return subprocess.CompletedProcess(command, 0, "", "")

    exporter = MsDeployExporter("msdeploy.exe", runner=runner)
    archive = exporter.export("Shop", str(tmp_path), SECRET)

    assert archive == os.path.join(str(tmp_path), "site.zip")
    assert commands[0] == [
        "msdeploy.exe",
        "-verb:sync",
        "-source:appHostConfig=Shop",
        f"-dest:package={archive},encryptPassword={SECRET}",
    ]


def test_destination_must_be_empty(tmp_path):
    (tmp_path / "old.zip").write_bytes(b"PK")
    exporter = MsDeployExporter(runner=lambda *a, **k: pytest.fail("exporter should not run"))
    with pytest.raises(PreconditionError):
        exporter.export("Shop", str(tmp_path), SECRET)


def test_failed_export_hides_secret(tmp_path):
    def runner(command, **kwargs):
        raise subprocess.CalledProcessError(2, command, output="", stderr="Site Shop does not exist")

    with pytest.raises(ExportError) as info:
        MsDeployExporter(runner=runner).export("Shop", str(tmp_path), SECRET)
    assert "does not exist" in str(info.value)
    assert SECRET not in str(info.value)


def test_missing_executable(tmp_path):
    def runner(command, **kwargs):
        raise FileNotFoundError(command[0])

    with pytest.raises(ExportError):
        MsDeployExporter("missing.exe", runner=runner).export("Shop", str(tmp_path), SECRET)


def test_exporter_must_leave_an_archive(tmp_path):
    runner = lambda command, **kwargs: subprocess.CompletedProcess(command, 0, "", "")
    with pytest.raises(ExportError):
        MsDeployExporter(runner=runner).export("Shop", str(tmp_path), SECRET)
