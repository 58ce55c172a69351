"""
Cloud platform migrators.

This subpackage creates the remote application, environment and storage,
uploads the deployment bundle and waits for the environment to converge.
The cloud itself is reached through
:class:`~iis_migrator.migrators.control_plane.CloudControlPlane`.
"""
