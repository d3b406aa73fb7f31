"""
Database connection management for docstore.

This module contains the Connection class, a thin executor around a psycopg2
connection, and the ``conn`` function that provides access to a persistent
connection. Compiled statements use ``$n`` placeholders, which are rewritten to
the driver's ``%s`` style on execution.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from getpass import getpass
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np
import psycopg2 as client
import psycopg2.extensions
import psycopg2.extras

from . import errors
from .condition import normalize_value
from .predicate import TOKEN
from .settings import config
from .version import __version__

if TYPE_CHECKING:
    from collections.abc import Generator


logger = logging.getLogger(__name__.split(".")[0])
query_log_max_length = 300


def translate_query_error(client_error: Exception, query: str) -> Exception:
    """
    Translate a psycopg2 error into the corresponding docstore exception.

    Args:
        client_error: The exception raised by psycopg2.
        query: The SQL query that caused the error.

    Returns:
        An instance of the appropriate DocStoreError subclass, or the original
        error if no specific translation is available.
    """
    pgcode = getattr(client_error, "pgcode", None)
    logger.debug(f"type: {type(client_error)}, pgcode: {pgcode}")

    if pgcode is None and isinstance(client_error, (client.OperationalError, client.InterfaceError)):
        return errors.LostConnectionError("Server connection lost", str(client_error))

    # Reference: https://www.postgresql.org/docs/current/errcodes-appendix.html
    match pgcode:
        # Integrity constraint violations
        case "23505":  # unique_violation
            return errors.DuplicateError(str(client_error))
        case "23503" | "23502" | "23514":  # foreign_key, not_null, check violations
            return errors.IntegrityError(str(client_error))
        # Syntax errors
        case "42601":  # syntax_error
            return errors.QuerySyntaxError(str(client_error), query)
        # Undefined errors
        case "42P01":  # undefined_table
            return errors.MissingTableError(str(client_error), query)
        case "42703":  # undefined_column
            return errors.UnknownAttributeError(str(client_error))
        # Connection errors
        case "08006" | "08003" | "08000" | "57P01":
            return errors.LostConnectionError(str(client_error))
        # Access errors
        case "42501":  # insufficient_privilege
            return errors.AccessError("Insufficient privileges.", str(client_error), query)
        # all the other errors are re-raised in original form
        case _:
            return client_error


def to_driver_query(text: str, params: Sequence[Any] = ()) -> tuple[str, tuple | None]:
    """
    Rewrite ``$n`` placeholders to ``%s`` and order the arguments by occurrence.

    A placeholder may be referenced more than once; its value is repeated.
    Literal ``%`` signs are escaped when arguments are passed.

    >>> to_driver_query("a = $2 AND b = $1", ["x", "y"])
    ('a = %s AND b = %s', ('y', 'x'))
    """
    params = [normalize_value(p) for p in params]
    found = [m.group(1) for m in TOKEN.finditer(text) if m.group(1) is not None]
    numbers = [int(n) for n in found if n]
    if not numbers:
        return text, None
    if len(numbers) != len(found) or max(numbers) > len(params):
        raise errors.QueryError(f"Placeholders of {text!r} do not match {len(params)} params")
    query = TOKEN.sub(lambda m: m.group(0) if m.group(1) is None else "%s", text.replace("%", "%%"))
    return query, tuple(params[n - 1] for n in numbers)


def _register_numpy_adapters() -> None:
    # numpy scalars reaching the driver directly, e.g. from DataFrame rows
    psycopg2.extensions.register_adapter(np.bool_, lambda x: psycopg2.extensions.AsIs(str(bool(x)).upper()))
    for np_type in (np.int8, np.int16, np.int32, np.int64, np.uint8, np.uint16, np.uint32, np.uint64):
        psycopg2.extensions.register_adapter(np_type, lambda x: psycopg2.extensions.AsIs(int(x)))
    for np_ftype in (np.float16, np.float32, np.float64):
        psycopg2.extensions.register_adapter(np_ftype, lambda x: psycopg2.extensions.AsIs(repr(float(x))))


def conn(
    host: str | None = None,
    user: str | None = None,
    password: str | None = None,
    *,
    reset: bool = False,
    use_tls: bool | None = None,
) -> Connection:
    """
    Return a persistent connection object to be shared by multiple modules.

    If the connection is not yet established or reset=True, a new connection is set up.
    Connection information missing from the arguments is taken from config. If the
    password is not configured, docstore prompts for it.
    """
    if not hasattr(conn, "connection") or reset:
        host = host if host is not None else config["database.host"]
        user = user if user is not None else config["database.user"]
        password = password if password is not None else config["database.password"]
        if user is None:
            user = input("Please enter docstore username: ")
        if password is None:
            password = getpass(prompt="Please enter docstore password: ")
        use_tls = use_tls if use_tls is not None else config["database.use_tls"]
        conn.connection = Connection(host, user, password, use_tls=use_tls)
    return conn.connection


class Connection:
    """
    A connection to a PostgreSQL server holding the document store.

    Args:
        host: Database hostname, optionally with port (host:port).
        user: Database username.
        password: Database password.
        port: Port number. Overridden if specified in host.
        dbname: Database name, default from config.
        use_tls: True requires TLS, False disables it, None prefers it.

    Attributes:
        conn_info: Dictionary of connection parameters.
    """

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int | None = None,
        dbname: str | None = None,
        use_tls: bool | None = None,
    ) -> None:
        if ":" in host:
            # the port in the hostname overrides the port argument
            host, port = host.split(":")
            port = int(port)
        elif port is None:
            port = config["database.port"]
        self.conn_info = dict(host=host, port=port, user=user, password=password)
        self.conn_info["dbname"] = dbname or config["database.dbname"]
        self.use_tls = use_tls
        self._conn = None
        self._in_transaction = False
        self.connect()
        logger.info(
            "docstore {version} connected to {user}@{host}:{port}".format(version=__version__, **self.conn_info)
        )

    def __repr__(self) -> str:
        connected = "connected" if self.is_connected else "disconnected"
        return "docstore connection ({connected}) {user}@{host}:{port}".format(connected=connected, **self.conn_info)

    def connect(self) -> None:
        """Establish connection to the database server."""
        if self.use_tls is False:
            sslmode = "disable"
        elif self.use_tls is True:
            sslmode = "require"
        else:
            sslmode = "prefer"
        try:
            self._conn = client.connect(
                sslmode=sslmode,
                connect_timeout=config["database.connect_timeout"],
                **self.conn_info,
            )
        except client.OperationalError as err:
            raise errors.LostConnectionError(
                "Connection failed {user}@{host}:{port}".format(**self.conn_info), str(err)
            )
        # transactions are managed explicitly by start_transaction()
        self._conn.autocommit = True
        _register_numpy_adapters()
        if config["timeout"]:
            self.query(f"SET statement_timeout = {int(config['timeout'])}")

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @property
    def is_connected(self) -> bool:
        """Return True if connected to the database server."""
        return self._conn is not None and self._conn.closed == 0

    def query(self, query: str, params: Sequence[Any] = ()) -> Any:
        """
        Execute a statement with ``$n`` placeholders and return the cursor.

        Args:
            query: The SQL statement.
            params: Values for the placeholders.

        Returns:
            A psycopg2 cursor yielding rows as dictionaries.

        Raises:
            QueryError: Translated driver errors.
            LostConnectionError: If the connection is lost.
        """
        text, args = to_driver_query(query, params)
        logger.debug("Executing SQL:" + query[:query_log_max_length])
        cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        try:
            cursor.execute(text, args)
        except client.Error as err:
            raise translate_query_error(err, query)
        return cursor

    def execute(self, query: str, params: Sequence[Any] = ()) -> list:
        """Execute a statement and return its rows as a list of dicts (empty when it returns none)."""
        cursor = self.query(query, params)
        if cursor.description is None:
            return []
        return [dict(row) for row in cursor.fetchall()]

    # ---------- transaction processing
    @property
    def in_transaction(self) -> bool:
        """Return True if there is an open transaction."""
        self._in_transaction = self._in_transaction and self.is_connected
        return self._in_transaction

    def start_transaction(self) -> None:
        """
        Start a new database transaction.

        Raises:
            DocStoreError: If already in a transaction (nesting not supported).
        """
        if self.in_transaction:
            raise errors.DocStoreError("Nested transactions are not supported.")
        self.query("BEGIN")
        self._in_transaction = True
        logger.debug("Transaction started")

    def cancel_transaction(self) -> None:
        """Cancel the current transaction and roll back all changes."""
        self.query("ROLLBACK")
        self._in_transaction = False
        logger.debug("Transaction cancelled. Rolling back ...")

    def commit_transaction(self) -> None:
        """Commit all changes made during the transaction and close it."""
        self.query("COMMIT")
        self._in_transaction = False
        logger.debug("Transaction committed and closed.")

    # -------- context manager for transactions
    @property
    @contextmanager
    def transaction(self) -> Generator[Connection, None, None]:
        """
        Context manager for database transactions.

        Opens a transaction and commits it after the with block completes successfully.
        If an exception is raised, the transaction is rolled back and the exception re-raised.

        Example:
            >>> with docstore.conn().transaction as connection:
            ...     declare_index(connection, Document, person, "age")
        """
        self.start_transaction()
        try:
            yield self
        except BaseException:
            self.cancel_transaction()
            raise
        else:
            self.commit_transaction()
