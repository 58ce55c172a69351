"""
Package exporters producing the raw site snapshot.

The exporter is treated as an opaque collaborator: given a site name, an
empty destination directory and a one-time secret it must leave exactly one
archive in the destination.  :class:`MsDeployExporter` drives the Web Deploy
command line; tests substitute their own :class:`PackageExporter`.
"""

from __future__ import annotations

import os
import subprocess
from typing import Callable, List

from ..utils.errors import ExportError, PreconditionError

DEFAULT_MSDEPLOY_PATH = r"C:\Program Files\IIS\Microsoft Web Deploy V3\msdeploy.exe"


def ensure_empty_directory(path: str) -> None:
    """Raise :class:`PreconditionError` unless ``path`` is an existing, empty directory."""
    if not os.path.isdir(path):
        raise PreconditionError(f"Directory does not exist: {path}")
    if os.listdir(path):
        raise PreconditionError(f"Directory is not empty: {path}")


class PackageExporter:
    """Base class for exporters; subclasses implement :meth:`_export`."""

    def export(self, site_name: str, destination: str, secret: str) -> str:
        ensure_empty_directory(destination)
        archive = self._export(site_name, destination, secret)
        if not os.path.isfile(archive):
            raise ExportError(f"Exporter reported {archive} but no such file was written")
        return archive

    def _export(self, site_name: str, destination: str, secret: str) -> str:
        raise NotImplementedError


class MsDeployExporter(PackageExporter):
    def __init__(
        self,
        executable: str = DEFAULT_MSDEPLOY_PATH,
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.executable = executable
        self._runner = runner

    def build_command(self, site_name: str, archive: str, secret: str) -> List[str]:
        return [
            self.executable,
            "-verb:sync",
            f"-source:appHostConfig={site_name}",
            f"-dest:package={archive},encryptPassword={secret}",
        ]

    def _export(self, site_name: str, destination: str, secret: str) -> str:
        archive = os.path.join(destination, "site.zip")
        command = self.build_command(site_name, archive, secret)
        try:
            self._runner(command, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise ExportError(f"Package exporter not found at {self.executable}") from e
        except subprocess.CalledProcessError as e:
            # The command line carries the secret, keep it out of the message.
            detail = (e.stderr or e.stdout or "").strip()
            raise ExportError(f"Package exporter exited with code {e.returncode}: {detail}") from e
        return archive
