"""
Extractors for the on-premises IIS host.

This subpackage reads the site definition from ``applicationHost.config``,
the declared connection strings from the site's ``web.config``, and drives
the package exporter that snapshots the site into a single archive.
"""
