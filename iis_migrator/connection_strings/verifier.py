"""
Connectivity verification for replacement connection strings.

:class:`TcpConnectionVerifier` only proves that the server named in the
connection string accepts TCP connections; it does not log in.  Anything
with a ``verify(connection_string)`` method raising on failure can be used
instead.
"""

from __future__ import annotations

import socket
from typing import Dict, Optional, Tuple

from ..utils.errors import ConnectionVerificationError

DEFAULT_SQL_SERVER_PORT = 1433
SERVER_KEYS = ("data source", "server", "address", "addr", "network address")


def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """Split ``Key=Value;`` pairs into a dictionary with lower-cased keys."""
    pairs: Dict[str, str] = {}
    for part in connection_string.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = " ".join(key.split()).lower()
        if key:
            pairs[key] = value.strip()
    return pairs


def server_endpoint(connection_string: str, default_port: int = DEFAULT_SQL_SERVER_PORT) -> Tuple[str, int]:
    """
    Extract ``(host, port)`` from a SQL Server style connection string.

    Handles ``tcp:`` prefixes, ``host,port`` and ``host\\instance`` forms.

    :raises ConnectionVerificationError: if no server key is present or the
        port is not a number.
    """
    pairs = parse_connection_string(connection_string)
    server: Optional[str] = None
    for key in SERVER_KEYS:
        if pairs.get(key):
            server = pairs[key]
            break
    if not server:
        raise ConnectionVerificationError("Connection string does not name a server")

    if server.lower().startswith("tcp:"):
        server = server[4:]
    port = default_port
    if "," in server:
        server, raw_port = server.split(",", 1)
        try:
            port = int(raw_port.strip())
        except ValueError as e:
            raise ConnectionVerificationError(f"Invalid port in connection string: {raw_port!r}") from e
    host = server.split("\\", 1)[0].strip()
    if host in (".", "(local)", "localhost"):
        host = "localhost"
    if not host:
        raise ConnectionVerificationError("Connection string does not name a server")
    return host, port


class TcpConnectionVerifier:
    def __init__(self, timeout: float = 5.0, *, connect=socket.create_connection) -> None:
        self.timeout = timeout
        self._connect = connect

    def verify(self, connection_string: str) -> None:
        host, port = server_endpoint(connection_string)
        try:
            conn = self._connect((host, port), timeout=self.timeout)
        except OSError as e:
            raise ConnectionVerificationError(f"Could not reach {host}:{port}: {e}") from e
        conn.close()
