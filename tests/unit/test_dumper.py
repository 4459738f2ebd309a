"""
Unit tests for the SQL dumper (sitebackup/backup/dumper.py).

Uses the FakeServer from conftest, which escapes values with PyMySQL's
escape_string like a real connection does.
"""

from decimal import Decimal
from datetime import datetime, timedelta

import pytest

from sitebackup.backup.dumper import TableDumper, DumpError, base_type, format_time, is_numeric_type
from sitebackup.backup.rules import DatabaseSpec


def _connect(server, database='shop'):
    connection = server.factory('localhost', 'backup', 'secret', database=database)
    connection.connect()
    return connection


class TestBaseType:

    @pytest.mark.parametrize("declared,expected", [
        ("varchar(255)", "varchar"),
        ("decimal(10,2)", "decimal"),
        ("int(11) unsigned", "int"),
        ("int unsigned", "int"),
        ("TEXT", "text"),
        ("datetime", "datetime"),
        (b"bigint(20)", "bigint"),
    ])
    def test_base_type(self, declared, expected):
        assert base_type(declared) == expected

    @pytest.mark.parametrize("type_name", [
        "tinyint", "smallint", "mediumint", "int", "bigint",
        "decimal", "float", "double", "real", "bit",
    ])
    def test_numeric_types(self, type_name):
        assert is_numeric_type(type_name) is True

    @pytest.mark.parametrize("type_name", [
        "char", "varchar", "text", "date", "datetime", "enum", "json", "blob", "geometry",
    ])
    def test_other_types_are_quoted(self, type_name):
        assert is_numeric_type(type_name) is False

    def test_classification_is_case_sensitive(self):
        """base_type lower-cases; the numeric set itself only holds lower-case names."""
        assert is_numeric_type("INT") is False
        assert is_numeric_type(base_type("INT(11)")) is True


class TestTableDumper:
    """Test TableDumper.dump against a fake server."""

    def test_script_starts_with_encoding(self, fake_server):
        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert script.startswith("SET NAMES utf8;\n\n\n")

    def test_session_encoding_is_set(self, fake_server):
        connection = _connect(fake_server)

        TableDumper(client_encoding='utf8mb4').dump(connection, DatabaseSpec('shop'))

        assert connection.queries[0] == 'SET NAMES utf8mb4'

    def test_create_statements_are_verbatim(self, fake_server):
        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        create = fake_server.databases['shop']['customers']['create']
        assert create + ";\n\n" in script

    def test_rows_rendered_as_single_insert(self, fake_server):
        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert script.count("INSERT INTO `customers`") == 1
        assert "INSERT INTO `customers` (`id`, `name`) VALUES \n" in script
        assert "(1, 'Al')" in script
        assert "(2, 'O\\'Reilly')" in script
        assert "(1, 'Al'), \n(2, 'O\\'Reilly');" in script

    def test_empty_table_has_schema_only(self, fake_server):
        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "CREATE TABLE `empty_table`" in script
        assert "INSERT INTO `empty_table`" not in script

    def test_database_without_tables(self, fake_server):
        fake_server.add_database('blank')

        script = TableDumper().dump(_connect(fake_server, 'blank'), DatabaseSpec('blank'))

        assert script == "SET NAMES utf8;\n\n\n"

    def test_decimal_unquoted_char_quoted(self, fake_server):
        fake_server.add_table(
            'shop', 'prices',
            'CREATE TABLE `prices` (`amount` decimal(10,2), `flag` char(1))',
            [('amount', 'decimal(10,2)'), ('flag', 'char(1)')],
            rows=[(Decimal('12.50'), 'Y')]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "(12.50, 'Y')" in script

    def test_numeric_looking_strings_stay_quoted(self, fake_server):
        fake_server.add_table(
            'shop', 'codes',
            'CREATE TABLE `codes` (`zip` varchar(10))',
            [('zip', 'varchar(10)')],
            rows=[('01234',)]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "('01234')" in script

    def test_null_values_render_as_null(self, fake_server):
        fake_server.add_table(
            'shop', 'notes',
            'CREATE TABLE `notes` (`id` int, `body` text)',
            [('id', 'int(11)'), ('body', 'text')],
            rows=[(1, None), (None, 'x')]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "(1, NULL)" in script
        assert "(NULL, 'x')" in script

    def test_bit_bytes_render_as_integer(self, fake_server):
        fake_server.add_table(
            'shop', 'flags',
            'CREATE TABLE `flags` (`active` bit(1))',
            [('active', 'bit(1)')],
            rows=[(b'\x01',), (b'\x00',)]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "(1), \n(0);" in script

    def test_binary_values_render_as_hex(self, fake_server):
        fake_server.add_table(
            'shop', 'files',
            'CREATE TABLE `files` (`data` blob)',
            [('data', 'blob')],
            rows=[(b"\x00'\xff",)]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "(X'0027ff')" in script

    def test_datetime_values_are_quoted(self, fake_server):
        fake_server.add_table(
            'shop', 'events',
            'CREATE TABLE `events` (`at` datetime)',
            [('at', 'datetime')],
            rows=[(datetime(2024, 1, 5, 10, 30),)]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "('2024-01-05 10:30:00')" in script

    def test_time_values_render_as_time_literals(self, fake_server):
        fake_server.add_table(
            'shop', 'shifts',
            'CREATE TABLE `shifts` (`length` time)',
            [('length', 'time')],
            rows=[(timedelta(hours=26),), (timedelta(hours=-1),), (timedelta(seconds=1, microseconds=500),)]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "('26:00:00'), \n('-1:00:00'), \n('0:00:01.000500');" in script
        assert 'day' not in script

    def test_special_characters_are_escaped(self, fake_server):
        fake_server.add_table(
            'shop', 'texts',
            'CREATE TABLE `texts` (`body` text)',
            [('body', 'text')],
            rows=[('line1\nline2\\end',)]
        )

        script = TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert "('line1\\nline2\\\\end')" in script

    def test_views_have_no_inserts(self, fake_server):
        fake_server.add_table(
            'shop', 'customer_names',
            'CREATE VIEW `customer_names` AS select `name` from `customers`',
            [('name', 'varchar(50)')],
            rows=[('Al',)],
            view=True
        )

        connection = _connect(fake_server)
        script = TableDumper().dump(connection, DatabaseSpec('shop'))

        assert 'CREATE VIEW `customer_names`' in script
        assert 'INSERT INTO `customer_names`' not in script
        assert 'SELECT * FROM `customer_names`' not in connection.queries

    def test_views_follow_base_tables(self, fake_server):
        fake_server.add_database('blog')
        fake_server.add_table(
            'blog', 'a_recent_posts',
            'CREATE VIEW `a_recent_posts` AS select `title` from `z_posts`',
            [('title', 'varchar(100)')],
            view=True
        )
        fake_server.add_table(
            'blog', 'z_posts',
            'CREATE TABLE `z_posts` (`title` varchar(100))',
            [('title', 'varchar(100)')],
            rows=[('Hello',)]
        )

        script = TableDumper().dump(_connect(fake_server, 'blog'), DatabaseSpec('blog'))

        assert script.index('CREATE TABLE `z_posts`') < script.index('CREATE VIEW `a_recent_posts`')
        assert script.index('INSERT INTO `z_posts`') < script.index('CREATE VIEW `a_recent_posts`')

    def test_rows_are_streamed(self, fake_server):
        connection = _connect(fake_server)
        calls = []
        original_query = connection.query

        def recording_query(sql, stream=False):
            calls.append((sql, stream))
            return original_query(sql, stream=stream)

        connection.query = recording_query
        TableDumper().dump(connection, DatabaseSpec('shop'))

        assert ('SELECT * FROM `customers`', True) in calls

    def test_table_filters_ignored_by_default(self, fake_server):
        spec = DatabaseSpec('shop', include_tables=['empty_table'], exclude_tables=['customers'])

        script = TableDumper().dump(_connect(fake_server), spec)

        assert 'CREATE TABLE `customers`' in script
        assert 'CREATE TABLE `empty_table`' in script

    def test_include_tables_enforced(self, fake_server):
        spec = DatabaseSpec('shop', include_tables=['empty_table'])

        script = TableDumper(enforce_table_filters=True).dump(_connect(fake_server), spec)

        assert 'CREATE TABLE `customers`' not in script
        assert 'CREATE TABLE `empty_table`' in script

    def test_exclude_tables_enforced(self, fake_server):
        spec = DatabaseSpec('shop', exclude_tables=['customers'])

        script = TableDumper(enforce_table_filters=True).dump(_connect(fake_server), spec)

        assert 'CREATE TABLE `customers`' not in script
        assert 'CREATE TABLE `empty_table`' in script

    def test_table_listing_failure_raises(self, fake_server):
        fake_server.fail_statements.add('SHOW FULL TABLES')

        with pytest.raises(DumpError) as exc_info:
            TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

        assert exc_info.value.statement == 'SHOW FULL TABLES'

    def test_schema_failure_raises(self, fake_server):
        fake_server.fail_statements.add('SHOW COLUMNS FROM `customers`')

        with pytest.raises(DumpError, match="query_error"):
            TableDumper().dump(_connect(fake_server), DatabaseSpec('shop'))

    def test_no_connection_raises(self, fake_server):
        connection = fake_server.factory('localhost', 'backup', 'secret', database='shop')

        with pytest.raises(DumpError, match="no_connection"):
            TableDumper().dump(connection, DatabaseSpec('shop'))


class TestFormatTime:

    @pytest.mark.parametrize('value,expected', [
        (timedelta(0), '0:00:00'),
        (timedelta(hours=10, minutes=5, seconds=3), '10:05:03'),
        (timedelta(days=34, hours=22, minutes=59, seconds=59), '838:59:59'),
        (timedelta(hours=-1), '-1:00:00'),
        (timedelta(minutes=-1, seconds=30), '-0:00:30'),
        (timedelta(seconds=1, microseconds=500), '0:00:01.000500'),
    ])
    def test_format_time(self, value, expected):
        assert format_time(value) == expected
