"""
Thin pyodbc wrapper used by the runner and the assessment exporter.

Everything above this module talks to the engine through ``query()``, which
returns rows as dictionaries, or ``query_with_columns()`` when column names
are needed for an empty result set. Tests substitute an object with the same
method.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pyodbc

from .errors import ConnectivityError

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"


def build_connection_string(server: str, database: str, driver: str = DEFAULT_DRIVER,
                            username: Optional[str] = None,
                            password: Optional[str] = None,
                            trust_server_certificate: bool = True) -> str:
    """Build an ODBC connection string; integrated auth when no username is given."""
    parts = [
        f"DRIVER={{{driver}}}",
        f"SERVER={server}",
        f"DATABASE={database}",
        "APP=sqlbench",
    ]
    if username:
        parts.append(f"UID={username}")
        parts.append(f"PWD={password or ''}")
    else:
        parts.append("Trusted_Connection=yes")
    if trust_server_certificate:
        parts.append("TrustServerCertificate=yes")
    return ";".join(parts) + ";"


class SqlServerConnection:
    """Blocking connection to one SQL Server instance."""

    def __init__(self, server: str, database: str = "tempdb",
                 driver: str = DEFAULT_DRIVER,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 login_timeout: int = 15,
                 query_timeout: int = 600):
        self.server = server
        self.database = database
        self.driver = driver
        self.username = username
        self.password = password
        self.login_timeout = login_timeout
        self.query_timeout = query_timeout
        self._conn = None

    def connect(self) -> 'SqlServerConnection':
        conn_str = build_connection_string(self.server, self.database, self.driver,
                                           self.username, self.password)
        logger.debug(f"Connecting to {self.server}/{self.database} via {self.driver}")
        try:
            self._conn = pyodbc.connect(conn_str, autocommit=True, timeout=self.login_timeout)
        except pyodbc.Error as e:
            raise ConnectivityError(f"Cannot connect to {self.server}: {e}") from e
        self._conn.timeout = self.query_timeout
        return self

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> 'SqlServerConnection':
        return self.connect()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Execute a batch and return the first result set as a list of dicts."""
        _, rows = self.query_with_columns(sql, params)
        return rows

    def query_with_columns(self, sql: str, params: Sequence[Any] = ()) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Like query(), but also return the result set's column names.

        Column names are known even when the result set is empty.

        Batches may contain several statements; row-count messages and
        statements without a result set are skipped. pyodbc.Error propagates
        to the caller, which decides whether it is fatal.
        """
        if self._conn is None:
            raise ConnectivityError("Connection is not open")
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, *params)
            while cursor.description is None:
                if not cursor.nextset():
                    return [], []
            columns = [column[0] for column in cursor.description]
            return columns, [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()
