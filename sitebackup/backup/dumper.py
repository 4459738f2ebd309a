"""
SQL dump of a MySQL database.

Produces one replayable script per database:

    SET NAMES utf8;

    CREATE TABLE `t` (...);

    INSERT INTO `t` (`a`, `b`) VALUES
    (1, 'x'),
    (2, 'y');

Numeric columns are written as bare literals, every other column as a
quoted, escaped string literal.
"""

import logging
from datetime import timedelta
from typing import List, Tuple

from .connections import QueryError, quote_identifier
from .rules import DatabaseSpec


logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ENCODING = 'utf8'

# Exact lower-case base type names rendered without quotes
NUMERIC_TYPES = frozenset({
    'tinyint', 'smallint', 'mediumint', 'int', 'integer', 'bigint',
    'decimal', 'numeric', 'float', 'double', 'real', 'bit',
})


class DumpError(Exception):
    """Raised when a database cannot be dumped."""

    def __init__(self, message: str, statement: str = None):
        super().__init__(message)
        self.statement = statement


def base_type(declared_type) -> str:
    """
    Reduce a declared column type to its base name.

    varchar(255) -> varchar, decimal(10,2) -> decimal, int unsigned -> int
    """
    if isinstance(declared_type, bytes):
        declared_type = declared_type.decode('ascii', errors='replace')
    name = declared_type.split('(', 1)[0].strip()
    return name.split(' ', 1)[0].lower() if name else ''


def is_numeric_type(type_name: str) -> bool:
    return type_name in NUMERIC_TYPES


def format_time(value: timedelta) -> str:
    """
    Render a TIME value as MySQL expects it: [-]H:MM:SS[.ffffff].

    PyMySQL returns TIME columns as timedelta, whose str() form
    ("1 day, 2:00:00") is not a valid TIME literal.
    """
    total = (value.days * 86400 + value.seconds) * 1000000 + value.microseconds
    sign = '-' if total < 0 else ''
    seconds, microseconds = divmod(abs(total), 1000000)
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    text = f"{sign}{hours}:{minutes:02d}:{seconds:02d}"
    if microseconds:
        text += f".{microseconds:06d}"
    return text


class TableDumper:
    """
    Renders the tables of one database as SQL statements.

    Instances hold no state between dumps.
    """

    def __init__(self, client_encoding: str = DEFAULT_CLIENT_ENCODING,
                 enforce_table_filters: bool = False):
        """
        Args:
            client_encoding: Session character set (SET NAMES) for the dump
            enforce_table_filters: Honour each database's include/exclude table lists.
                Off by default: every table is dumped.
        """
        self.client_encoding = client_encoding
        self.enforce_table_filters = enforce_table_filters

    def _query(self, connection, sql: str, stream: bool = False):
        result = connection.query(sql, stream=stream)
        if not result.ok:
            raise DumpError(f"Query failed ({result.status}): {result.error}", statement=sql)
        return result.rows

    def list_tables(self, connection) -> List[Tuple[str, bool]]:
        """
        Enumerate the tables of the current database.

        Returns:
            List of (table_name, is_view)
        """
        tables = []
        for row in self._query(connection, "SHOW FULL TABLES"):
            table_type = row[1] if len(row) > 1 else 'BASE TABLE'
            tables.append((row[0], str(table_type).upper() == 'VIEW'))
        return tables

    def _select_tables(self, tables, spec: DatabaseSpec):
        if not self.enforce_table_filters:
            return tables

        if spec.include_tables:
            tables = [table for table in tables if table[0] in spec.include_tables]
        return [table for table in tables if table[0] not in spec.exclude_tables]

    def table_fields(self, connection, table: str) -> List[Tuple[str, str]]:
        """
        Get the ordered columns of a table.

        Returns:
            List of (column_name, base_type)
        """
        rows = self._query(connection, f"SHOW COLUMNS FROM {quote_identifier(table)}")
        return [(row[0], base_type(row[1])) for row in rows]

    def create_statement(self, connection, table: str) -> str:
        rows = self._query(connection, f"SHOW CREATE TABLE {quote_identifier(table)}")
        if not rows:
            raise DumpError(f"No CREATE statement returned for {table}")
        return rows[0][1]

    def render_value(self, connection, value, type_name: str) -> str:
        """
        Render one column value as a SQL literal.

        NULL becomes NULL; numeric columns are bare; binary values are hex
        literals; everything else is a quoted string escaped by the driver.
        """
        if value is None:
            return 'NULL'

        if is_numeric_type(type_name):
            if isinstance(value, (bytes, bytearray)):
                # BIT columns come back as big-endian bytes
                return str(int.from_bytes(value, 'big'))
            if isinstance(value, bool):
                value = int(value)
            return connection.escape_literal(value)

        if isinstance(value, (bytes, bytearray)):
            return f"X'{bytes(value).hex()}'" if value else "''"

        if isinstance(value, timedelta):
            value = format_time(value)

        return "'" + connection.escape_literal(value) + "'"

    def render_row(self, connection, row, fields) -> str:
        values = [
            self.render_value(connection, value, fields[index][1])
            for index, value in enumerate(row)
        ]
        return '(' + ', '.join(values) + ')'

    def dump_table(self, connection, table: str, is_view: bool = False) -> str:
        """
        Render schema and data of a single table.

        Raises:
            DumpError: If any statement fails
        """
        script = self.create_statement(connection, table) + ";\n\n"

        if is_view:
            return script

        fields = self.table_fields(connection, table)
        rows = self._query(connection, f"SELECT * FROM {quote_identifier(table)}", stream=True)

        tuples = []
        try:
            for row in rows:
                tuples.append(self.render_row(connection, row, fields))
        except QueryError as e:
            raise DumpError(f"Failed reading rows of {table}: {e}")

        if tuples:
            columns = ', '.join(quote_identifier(name) for name, _ in fields)
            script += f"INSERT INTO {quote_identifier(table)} ({columns}) VALUES \n"
            script += ', \n'.join(tuples)
            script += ";\n\n\n\n"

        return script

    def dump(self, connection, spec: DatabaseSpec) -> str:
        """
        Dump every table of spec's database.

        The connection must already have spec's database selected.

        Args:
            connection: Connected database (see connections.DatabaseConnection)
            spec: Database being dumped

        Returns:
            SQL script

        Raises:
            DumpError: If the session setup, table listing or any table dump fails
        """
        self._query(connection, f"SET NAMES {self.client_encoding}")
        script = f"SET NAMES {self.client_encoding};\n\n\n"

        tables = self._select_tables(self.list_tables(connection), spec)
        # Views last: they may select from any base table
        tables.sort(key=lambda table: table[1])
        logger.info(f"Dumping {len(tables)} tables from {spec.name}")

        for table, is_view in tables:
            script += self.dump_table(connection, table, is_view)

        return script
