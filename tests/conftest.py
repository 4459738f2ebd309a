"""
Shared pytest fixtures for sitebackup tests.

This module provides fixtures for:
- Flask app and test client
- A sample site tree on disk
- An in-memory fake MySQL server implementing the connection interface
"""

import re

import pytest
from pymysql.converters import escape_string

from sitebackup import create_app
from sitebackup.auth import hash_password
from sitebackup.backup.connections import QueryResult, DatabaseConnectionError


OPERATOR_PASSWORD = 'Backup123'


class FakeServer:
    """
    In-memory stand-in for a MySQL server.

    Databases map table names to dicts with keys: create, columns, rows, view.
    Statements listed in fail_statements return a query error.
    """

    def __init__(self):
        self.databases = {}
        self.credentials = {}
        self.fail_statements = set()
        self.connections = []

    def add_user(self, user, password):
        self.credentials[user] = password

    def add_database(self, name):
        self.databases.setdefault(name, {})

    def add_table(self, database, table, create, columns, rows=(), view=False):
        self.add_database(database)
        self.databases[database][table] = {
            'create': create,
            'columns': list(columns),
            'rows': list(rows),
            'view': view,
        }

    def factory(self, host, user, password, database=None, charset='utf8'):
        connection = FakeConnection(self, host, user, password, database, charset)
        self.connections.append(connection)
        return connection


class FakeConnection:
    """Connection to a FakeServer with the DatabaseConnection interface."""

    def __init__(self, server, host, user, password, database=None, charset='utf8'):
        self.server = server
        self.host = host
        self.user = user
        self.password = password
        self.database = database
        self.charset = charset
        self.queries = []
        self.connected = False
        self.closed = False
        self.last_error = ''

    def connect(self):
        if self.server.credentials.get(self.user) != self.password:
            self.last_error = f"Access denied for user '{self.user}'"
            raise DatabaseConnectionError(self.last_error)
        self.connected = True
        if self.database:
            self.select_database(self.database)

    def select_database(self, name):
        if name not in self.server.databases:
            self.last_error = f"Unknown database '{name}'"
            raise DatabaseConnectionError(self.last_error)
        self.database = name

    def query(self, sql, stream=False):
        self.queries.append(sql)

        if not self.connected:
            return QueryResult.no_connection()
        if sql in self.server.fail_statements:
            self.last_error = f"Error executing {sql}"
            return QueryResult.query_error(self.last_error)

        tables = self.server.databases.get(self.database, {})

        if sql.startswith('SET NAMES'):
            return QueryResult.success([])
        if sql == 'SHOW FULL TABLES':
            return QueryResult.success([
                (name, 'VIEW' if table['view'] else 'BASE TABLE')
                for name, table in tables.items()
            ])

        match = re.match(r'(SHOW CREATE TABLE|SHOW COLUMNS FROM|SELECT \* FROM) `(.+)`$', sql)
        if not match or match.group(2) not in tables:
            self.last_error = f"Unexpected statement {sql}"
            return QueryResult.query_error(self.last_error)

        statement, name = match.groups()
        table = tables[name]

        if statement == 'SHOW CREATE TABLE':
            return QueryResult.success([(name, table['create'])])
        if statement == 'SHOW COLUMNS FROM':
            return QueryResult.success([
                (column, declared, 'YES', '', None, '')
                for column, declared in table['columns']
            ])
        rows = [tuple(row) for row in table['rows']]
        return QueryResult.success(iter(rows) if stream else rows)

    def escape_literal(self, value):
        return escape_string(str(value))

    def close(self):
        self.connected = False
        self.closed = True


@pytest.fixture
def fake_server():
    """
    Fake MySQL server with user 'backup' / 'secret' and a 'shop' database.

    shop.customers: (id INT, name VARCHAR(50)) with two rows
    shop.empty_table: no rows
    """
    server = FakeServer()
    server.add_user('backup', 'secret')
    server.add_table(
        'shop', 'customers',
        'CREATE TABLE `customers` (\n  `id` int(11) NOT NULL,\n  `name` varchar(50) DEFAULT NULL\n)',
        [('id', 'int(11)'), ('name', 'varchar(50)')],
        rows=[(1, 'Al'), (2, "O'Reilly")]
    )
    server.add_table(
        'shop', 'empty_table',
        'CREATE TABLE `empty_table` (\n  `id` int(11) NOT NULL\n)',
        [('id', 'int(11)')]
    )
    return server


@pytest.fixture
def site_tree(tmp_path):
    """
    Create a sample site tree.

    Creates:
    - index.php
    - .htaccess
    - config/settings.php
    - config/secret.txt
    - a/one.txt
    - a/nested/deep.txt
    - a/nested/secret.txt
    - b/two.txt
    - c/three.txt
    """
    root = tmp_path / 'site'
    root.mkdir()

    (root / 'index.php').write_text('<?php echo "hi";')
    (root / '.htaccess').write_text('Deny from all')

    (root / 'config').mkdir()
    (root / 'config' / 'settings.php').write_text('<?php $x = 1;')
    (root / 'config' / 'secret.txt').write_text('password')

    (root / 'a' / 'nested').mkdir(parents=True)
    (root / 'a' / 'one.txt').write_text('one')
    (root / 'a' / 'nested' / 'deep.txt').write_text('deep')
    (root / 'a' / 'nested' / 'secret.txt').write_text('nested secret')

    (root / 'b').mkdir()
    (root / 'b' / 'two.txt').write_text('two')

    (root / 'c').mkdir()
    (root / 'c' / 'three.txt').write_text('three')

    return root


ALL_SITE_FILES = {
    'index.php',
    '.htaccess',
    'config/settings.php',
    'config/secret.txt',
    'a/one.txt',
    'a/nested/deep.txt',
    'a/nested/secret.txt',
    'b/two.txt',
    'c/three.txt',
}


@pytest.fixture
def all_site_files():
    return set(ALL_SITE_FILES)


@pytest.fixture
def app(tmp_path, site_tree):
    """
    Create Flask app with test configuration.

    The backup root is the sample site tree; no databases are configured.
    """
    temp_dir = tmp_path / 'temp'

    app = create_app(
        'testing',
        BACKUP_ROOT=str(site_tree),
        TEMP_DIR=str(temp_dir),
        BACKUP_OPERATOR_USERNAME='admin',
        BACKUP_OPERATOR_PASSWORD_HASH=hash_password(OPERATOR_PASSWORD),
    )
    yield app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def auth_headers():
    """HTTP Basic credentials for the test operator."""
    import base64
    token = base64.b64encode(f'admin:{OPERATOR_PASSWORD}'.encode()).decode()
    return {'Authorization': f'Basic {token}'}
