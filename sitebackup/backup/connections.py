"""
MySQL connections for database dumps.

- QueryResult: outcome of a query (no connection / query error / rows)
- DatabaseConnection: a single SQLAlchemy + PyMySQL connection
- ConnectionManager: owns the one active connection and swaps it per database
"""

import codecs
import logging
from typing import Callable, Iterable, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool
from pymysql.charset import charset_by_name

from .rules import DatabaseSpec


logger = logging.getLogger(__name__)

DEFAULT_CHARSET = 'utf8'


class DatabaseError(Exception):
    """Base class for database failures during a backup."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when a connection cannot be opened or a database cannot be selected."""
    pass


class MissingCredentialsError(DatabaseConnectionError):
    """Raised when a database has no credentials and no connection is active."""
    pass


class QueryError(DatabaseError):
    """Raised when a streamed result fails part way through."""
    pass


def quote_identifier(name: str) -> str:
    """Quote a MySQL identifier with backticks."""
    return '`' + name.replace('`', '``') + '`'


def python_encoding(charset: str) -> str:
    """
    Map a MySQL character set name to the Python codec with the same bytes.

    utf8 and utf8mb4 -> utf8, latin1 -> cp1252 (MySQL's latin1 is cp1252).

    Raises:
        LookupError: If Python has no codec for the character set
    """
    info = charset_by_name(charset)
    encoding = info.encoding if info is not None else charset
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        raise LookupError(f"No Python codec for MySQL character set {charset!r}")


class QueryResult:
    """
    Tagged outcome of DatabaseConnection.query().

    status is one of NO_CONNECTION, QUERY_ERROR or SUCCESS. Only successful
    results carry rows; failed ones carry an error message.
    """

    NO_CONNECTION = 'no_connection'
    QUERY_ERROR = 'query_error'
    SUCCESS = 'success'

    def __init__(self, status: str, rows: Iterable[tuple] = None, error: str = ''):
        self.status = status
        self.rows = rows if rows is not None else []
        self.error = error

    @classmethod
    def success(cls, rows: Iterable[tuple]) -> 'QueryResult':
        return cls(cls.SUCCESS, rows=rows)

    @classmethod
    def query_error(cls, error: str) -> 'QueryResult':
        return cls(cls.QUERY_ERROR, error=error)

    @classmethod
    def no_connection(cls) -> 'QueryResult':
        return cls(cls.NO_CONNECTION, error='No active database connection')

    @property
    def ok(self) -> bool:
        return self.status == self.SUCCESS

    def __repr__(self):
        return f'<QueryResult {self.status}>'


class DatabaseConnection:
    """
    A MySQL connection opened through SQLAlchemy with the PyMySQL driver.

    The engine uses NullPool: exactly one DBAPI connection lives for as long
    as this object is connected.
    """

    def __init__(self, host: str, user: str, password: str, database: str = None,
                 charset: str = DEFAULT_CHARSET):
        self.host = host
        self.user = user
        self.password = password
        self.database = database
        self.charset = charset
        self.last_error = ''

        self._engine = None
        self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self):
        """
        Open the connection.

        Raises:
            DatabaseConnectionError: If the server rejects the connection
        """
        url = URL.create(
            'mysql+pymysql',
            username=self.user,
            password=self.password,
            host=self.host,
            database=self.database or None,
            query={'charset': self.charset}
        )

        try:
            self._engine = create_engine(url, poolclass=NullPool)
            self._conn = self._engine.connect()
        except SQLAlchemyError as e:
            self.last_error = str(getattr(e, 'orig', None) or e)
            self.close()
            raise DatabaseConnectionError(
                f"Failed to connect to {self.user}@{self.host}: {self.last_error}"
            )

        logger.debug(f"Connected to {self.user}@{self.host}")

    def select_database(self, name: str):
        """
        Make name the current database.

        Raises:
            DatabaseConnectionError: If the database is unknown or not accessible
        """
        result = self.query(f"USE {quote_identifier(name)}")
        if not result.ok:
            raise DatabaseConnectionError(f"Cannot select database {name}: {result.error}")
        self.database = name

    def query(self, sql: str, stream: bool = False) -> QueryResult:
        """
        Execute a statement.

        Args:
            sql: SQL statement
            stream: Use a server-side cursor and return rows lazily

        Returns:
            QueryResult. Rows are tuples; with stream=True they are an
            iterator that must be consumed before the next query.
        """
        if self._conn is None:
            return QueryResult.no_connection()

        # Colons would otherwise be read as bind parameters
        statement = text(sql.replace(':', '\\:'))
        if stream:
            statement = statement.execution_options(stream_results=True)

        try:
            result = self._conn.execute(statement)
        except SQLAlchemyError as e:
            self.last_error = str(getattr(e, 'orig', None) or e)
            return QueryResult.query_error(self.last_error)

        self.last_error = ''

        if not result.returns_rows:
            result.close()
            return QueryResult.success([])

        if stream:
            return QueryResult.success(self._stream(result))

        rows = [tuple(row) for row in result]
        return QueryResult.success(rows)

    def _stream(self, result) -> Iterator[tuple]:
        try:
            for row in result:
                yield tuple(row)
        except SQLAlchemyError as e:
            self.last_error = str(getattr(e, 'orig', None) or e)
            raise QueryError(self.last_error)
        finally:
            result.close()

    def escape_literal(self, value) -> str:
        """
        Escape a value for use inside a SQL string literal.

        Uses the driver's escaping for this connection, which honours the
        server's NO_BACKSLASH_ESCAPES mode.
        """
        if self._conn is None:
            raise DatabaseConnectionError("Cannot escape values without an active connection")
        return self._conn.connection.dbapi_connection.escape_string(str(value))

    def close(self):
        """Close the connection and dispose of its engine."""
        if self._conn is not None:
            try:
                self._conn.close()
            except SQLAlchemyError as e:
                logger.warning(f"Error closing connection to {self.host}: {e}")
            self._conn = None

        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __repr__(self):
        return f'<DatabaseConnection {self.user}@{self.host}/{self.database or ""}>'


class ConnectionManager:
    """
    Owns the single active database connection.

    Connections are keyed by (host, user). A database with its own
    credentials replaces the active connection unless it uses the same key;
    a database without credentials reuses the active connection and only
    switches the current database.
    """

    def __init__(self, factory: Optional[Callable] = None, charset: str = DEFAULT_CHARSET):
        """
        Args:
            factory: Callable(host, user, password, database=, charset=) returning
                an unconnected connection object (DatabaseConnection by default)
            charset: Client character set for new connections
        """
        self.factory = factory or DatabaseConnection
        self.charset = charset
        self.active = None
        self.active_key = None

    def activate(self, spec: DatabaseSpec):
        """
        Return a connection with spec's database selected.

        Raises:
            MissingCredentialsError: No credentials in spec and no active connection
            DatabaseConnectionError: Connecting or selecting the database failed
        """
        if spec.has_credentials:
            options = spec.connection

            if self.active is not None and self.active_key == options.key:
                self.active.select_database(spec.name)
                return self.active

            self.close()
            connection = self.factory(
                options.host,
                options.user,
                options.password,
                database=spec.name,
                charset=self.charset
            )
            connection.connect()

            self.active = connection
            self.active_key = options.key
            logger.info(f"Opened database connection {options.user}@{options.host}")
            return connection

        if self.active is None:
            raise MissingCredentialsError(
                f"Can't back up database {spec.name} because connection settings are not set"
            )

        self.active.select_database(spec.name)
        return self.active

    def close(self):
        """Close the active connection, if any."""
        if self.active is not None:
            self.active.close()
            self.active = None
            self.active_key = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
