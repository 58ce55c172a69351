"""
Removal of transport-security certificates from an exported payload.

Web Deploy packages describe the exported site in ``archive.xml`` (and
optionally ``parameters.xml``).  Certificates bound to the site appear there
as ``httpCert`` or ``certificate`` nodes anywhere in the tree.  They must not
reach the cloud, so every such node is removed, one lookup at a time, until a
lookup finds nothing.  The payload zip is rewritten in place.
"""

from __future__ import annotations

import os
import tempfile
import xml.etree.ElementTree as ET
import zipfile
from typing import Dict, Optional, Tuple

CERTIFICATE_MANIFESTS = ("archive.xml", "parameters.xml")
CERTIFICATE_TAGS = ("httpCert", "certificate")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _find_certificate(root: ET.Element) -> Optional[Tuple[ET.Element, ET.Element]]:
    for parent in root.iter():
        for child in parent:
            if _local_name(child.tag) in CERTIFICATE_TAGS:
                return parent, child
    return None


def remove_certificate_nodes(root: ET.Element) -> int:
    """Remove every certificate node below ``root`` and return how many were removed."""
    removed = 0
    while True:
        match = _find_certificate(root)
        if match is None:
            return removed
        parent, node = match
        parent.remove(node)
        removed += 1


def scrub_xml_document(data: bytes) -> Tuple[bytes, int]:
    root = ET.fromstring(data)
    removed = remove_certificate_nodes(root)
    if not removed:
        return data, 0
    return ET.tostring(root, encoding="utf-8", xml_declaration=True), removed


def scrub_certificates(payload_zip: str) -> Dict[str, int]:
    """
    Strip certificate nodes from the known manifests inside ``payload_zip``.

    :param payload_zip: Path to the payload archive; rewritten in place when
        anything was removed.
    :return: Mapping of manifest name to number of nodes removed, for every
        manifest found in the archive.
    """
    results: Dict[str, int] = {}
    replacements: Dict[str, bytes] = {}
    with zipfile.ZipFile(payload_zip, "r") as zf:
        names = {name.lower(): name for name in zf.namelist()}
        for manifest in CERTIFICATE_MANIFESTS:
            name = names.get(manifest)
            if name is None:
                continue
            data, removed = scrub_xml_document(zf.read(name))
            results[manifest] = removed
            if removed:
                replacements[name] = data

    if not replacements:
        return results

    directory = os.path.dirname(os.path.abspath(payload_zip))
    fd, temp_path = tempfile.mkstemp(suffix=".zip", dir=directory)
    os.close(fd)
    try:
        with zipfile.ZipFile(payload_zip, "r") as src, zipfile.ZipFile(temp_path, "w", compression=zipfile.ZIP_DEFLATED) as dst:
            for info in src.infolist():
                if info.filename in replacements:
                    dst.writestr(info, replacements[info.filename])
                else:
                    dst.writestr(info, src.read(info.filename))
        os.replace(temp_path, payload_zip)
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)
    return results
