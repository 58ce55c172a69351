"""
Deployment bundle creation.

Turns the exporter's single payload archive into the folder layout the
hosting platform accepts, strips certificates from the payload, and zips the
result for upload.
"""

from .bundle import archive_bundle, build_bundle
from .certificates import scrub_certificates

__all__ = ["archive_bundle", "build_bundle", "scrub_certificates"]
