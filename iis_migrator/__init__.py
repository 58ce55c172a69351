"""
Top-level package for the IIS → cloud application hosting migration tool.

This package bundles all components required to assess an IIS website,
rewrite its connection strings, export it into a deployment bundle and
deploy that bundle into a cloud hosting environment.  Modules are split
into subpackages:

* :mod:`iis_migrator.extractors` – IIS configuration parsing and the package exporter
* :mod:`iis_migrator.assessment` – readiness checks and report aggregation
* :mod:`iis_migrator.connection_strings` – discovery, selection and rewriting
* :mod:`iis_migrator.packaging` – deployment bundle scaffolding and certificate scrubbing
* :mod:`iis_migrator.migrators` – cloud control plane and deployment state machine
* :mod:`iis_migrator.models` – versioned pydantic records
* :mod:`iis_migrator.utils` – errors, event logging, retry executor and session store

Each layer receives its configuration and collaborators explicitly;
orchestration is handled in :mod:`iis_migrator.migration_tool`.
"""

__version__ = "0.1.0"
