"""
Conversion of a raw site snapshot into a deployment bundle.

The bundle layout expected by the hosting platform is fixed::

    <root>/extension-points/        (empty, reserved)
    <root>/manifest.json
    <root>/scripts/install
    <root>/scripts/post_install
    <root>/scripts/restart
    <root>/scripts/uninstall
    <root>/payload.zip

Every step refuses to write into a directory that already holds content, so
that invoking the transformer twice cannot corrupt a bundle.  The
destination is checked before anything is written.

Usage example::

    bundle_dir = build_bundle(snapshot_dir, bundle_dir, "Default Web Site", secret)
    scrub_certificates(os.path.join(bundle_dir, PAYLOAD_FILE))
    archive_bundle(bundle_dir, "bundle.zip")
"""

from __future__ import annotations

import glob
import os
import shutil
import zipfile
from typing import Callable, Dict, List

from ..extractors.package_exporter import ensure_empty_directory
from ..utils.errors import PreconditionError
from .templates import LIFECYCLE_TEMPLATES, MANIFEST_TEMPLATE, SECRET_TOKEN, SITE_NAME_TOKEN

EXTENSION_POINTS_DIR = "extension-points"
SCRIPTS_DIR = "scripts"
MANIFEST_FILE = "manifest.json"
PAYLOAD_FILE = "payload.zip"
LIFECYCLE_SCRIPTS = tuple(LIFECYCLE_TEMPLATES)

_FORBIDDEN_SITE_NAME_CHARS = ('"', "\\", "`", "$", "\n", "\r")


def _print_log(message: str, level: str = "INFO") -> None:
    print(f"[{level}] {message}")


def _make_empty_dir(path: str) -> str:
    if os.path.exists(path):
        if not os.path.isdir(path) or os.listdir(path):
            raise PreconditionError(f"Refusing to reuse non-empty path: {path}")
        return path
    os.mkdir(path)
    return path


def render_template(template: str, replacements: Dict[str, str]) -> str:
    """Replace each placeholder literally; no other syntax is interpreted."""
    text = template
    for token, value in replacements.items():
        text = text.replace(token, value)
    return text


def find_payload_archive(source_dir: str) -> str:
    """
    Return the single archive inside ``source_dir``.

    :raises PreconditionError: if the folder is missing or holds zero or
        several archives.
    """
    if not os.path.isdir(source_dir):
        raise PreconditionError(f"Snapshot directory does not exist: {source_dir}")
    archives = sorted(glob.glob(os.path.join(source_dir, "*.zip")))
    if len(archives) != 1:
        raise PreconditionError(
            f"Expected exactly one payload archive in {source_dir}, found {len(archives)}"
        )
    return archives[0]


def validate_site_name(site_name: str) -> None:
    if not site_name or not site_name.strip():
        raise PreconditionError("Site name is empty")
    bad = [c for c in _FORBIDDEN_SITE_NAME_CHARS if c in site_name]
    if bad:
        raise PreconditionError(f"Site name {site_name!r} contains characters that cannot be templated: {bad}")


def create_extension_points_dir(destination: str) -> str:
    return _make_empty_dir(os.path.join(destination, EXTENSION_POINTS_DIR))


def create_scripts_dir(destination: str) -> str:
    return _make_empty_dir(os.path.join(destination, SCRIPTS_DIR))


def materialize_templates(destination: str, site_name: str, secret: str) -> List[str]:
    """
    Write the manifest and the four lifecycle scripts into ``destination``.

    Only the install script receives the one-time secret.
    """
    written: List[str] = []
    manifest_path = os.path.join(destination, MANIFEST_FILE)
    with open(manifest_path, "w", encoding="utf-8", newline="") as f:
        f.write(render_template(MANIFEST_TEMPLATE, {SITE_NAME_TOKEN: site_name}))
    written.append(manifest_path)

    scripts_dir = os.path.join(destination, SCRIPTS_DIR)
    for name, (template, receives_secret) in LIFECYCLE_TEMPLATES.items():
        replacements = {SITE_NAME_TOKEN: site_name}
        if receives_secret:
            replacements[SECRET_TOKEN] = secret
        path = os.path.join(scripts_dir, name)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(render_template(template, replacements))
        written.append(path)
    return written


def build_bundle(
    source_dir: str,
    destination: str,
    site_name: str,
    secret: str,
    *,
    log: Callable[..., None] = _print_log,
) -> str:
    """
    Scaffold a deployment bundle in ``destination`` from a site snapshot.

    :param source_dir: Folder containing exactly one payload archive.
    :param destination: Existing, empty folder receiving the bundle.
    :param site_name: Value substituted for the site-name placeholder.
    :param secret: One-time secret used by the install script to decrypt the payload.
    :param log: ``log(message, level)`` callable.
    :return: ``destination``.
    :raises PreconditionError: if any precondition does not hold.  Nothing is
        written in that case.
    """
    validate_site_name(site_name)
    payload = find_payload_archive(source_dir)
    ensure_empty_directory(destination)

    create_extension_points_dir(destination)
    create_scripts_dir(destination)
    materialize_templates(destination, site_name, secret)
    shutil.copy2(payload, os.path.join(destination, PAYLOAD_FILE))
    log(f"Deployment bundle for '{site_name}' created in {destination}")
    return destination


def archive_bundle(bundle_dir: str, archive_path: str) -> str:
    """Zip the bundle folder; directory entries are kept so empty folders survive."""
    if os.path.exists(archive_path):
        raise PreconditionError(f"Bundle archive already exists: {archive_path}")
    bundle_dir = os.path.abspath(bundle_dir)
    if os.path.abspath(archive_path).startswith(bundle_dir + os.sep):
        raise PreconditionError("Bundle archive cannot be written inside the bundle folder")

    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for dirpath, dirnames, filenames in os.walk(bundle_dir):
            dirnames.sort()
            rel_dir = os.path.relpath(dirpath, bundle_dir)
            if rel_dir != ".":
                zf.write(dirpath, rel_dir.replace(os.sep, "/") + "/")
            for filename in sorted(filenames):
                full = os.path.join(dirpath, filename)
                zf.write(full, os.path.relpath(full, bundle_dir).replace(os.sep, "/"))
    return archive_path
