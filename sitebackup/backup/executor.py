"""
Backup orchestrator - assembles the complete backup archive.

Workflow:
1. Open a zip archive on a fresh temporary file
2. Add the filtered file tree
3. Dump each configured database into <name>.sql
4. Finalize the archive
5. Return the archive path and size for delivery

Filesystem and archive failures abort the run and no archive is returned.
Database failures are recorded per database and the run continues.
"""

import logging
from datetime import datetime
from typing import List, Optional

from .archive import ZipArchiveSink, ArchiveError
from .connections import ConnectionManager, DatabaseError, MissingCredentialsError, python_encoding
from .dumper import TableDumper, DumpError, DEFAULT_CLIENT_ENCODING
from .rules import RuleSet, DatabaseSpec
from .tree import TreeArchiver, TreeWalkError


logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when the backup cannot be produced at all."""
    pass


class DatabaseOutcome:
    """Result of backing up one database."""

    SUCCESS = 'success'
    SKIPPED = 'skipped'
    FAILED = 'failed'

    def __init__(self, name: str, status: str, message: str = ''):
        self.name = name
        self.status = status
        self.message = message

    def __repr__(self):
        return f'<DatabaseOutcome {self.name} status={self.status}>'


class BackupResult:
    """Finished archive plus what happened to each database."""

    def __init__(self, archive_path: str, size: int, file_count: int,
                 databases: List[DatabaseOutcome], warnings: List[str], logs: List[str]):
        self.archive_path = archive_path
        self.size = size
        self.file_count = file_count
        self.databases = databases
        self.warnings = warnings
        self.logs = logs

    @property
    def succeeded(self) -> List[str]:
        return [outcome.name for outcome in self.databases if outcome.status == DatabaseOutcome.SUCCESS]

    @property
    def failed(self) -> List[str]:
        return [outcome.name for outcome in self.databases if outcome.status != DatabaseOutcome.SUCCESS]

    def __repr__(self):
        return f'<BackupResult {self.archive_path} size={self.size} databases={len(self.databases)}>'


class BackupOrchestrator:
    """
    Runs one archive build: file tree first, then every database in order.
    """

    def __init__(
        self,
        rules: RuleSet,
        root: str,
        temp_dir: Optional[str] = None,
        client_encoding: str = DEFAULT_CLIENT_ENCODING,
        fs_fail_fast: bool = True,
        enforce_table_filters: bool = False,
        connections: Optional[ConnectionManager] = None
    ):
        """
        Initialize backup orchestrator.

        Args:
            rules: Filesystem and database rules
            root: Backup root directory (becomes the archive root)
            temp_dir: Where the temporary archive is created
            client_encoding: Character set for the SQL dumps
            fs_fail_fast: Abort on unreadable directories instead of skipping them
            enforce_table_filters: Apply per-database table include/exclude lists
            connections: Connection manager to use. One is created (and closed
                after the run) when not given.
        """
        self.rules = rules
        self.root = root
        self.temp_dir = temp_dir
        self.client_encoding = client_encoding
        self.dump_encoding = None
        self.fs_fail_fast = fs_fail_fast
        self.enforce_table_filters = enforce_table_filters

        self._owns_connections = connections is None
        self.connections = connections or ConnectionManager(charset=client_encoding)

        self.sink = None
        self.outcomes: List[DatabaseOutcome] = []
        self.warnings: List[str] = []
        self.logs: List[str] = []

    def run(self) -> BackupResult:
        """
        Build the archive.

        Returns:
            BackupResult with the finalized archive

        Raises:
            BackupError: If the file tree or the archive cannot be written, or
                the client encoding has no Python codec
        """
        self._log(f"Starting backup of {self.root}")

        try:
            # .sql entries must be written in the charset named by SET NAMES
            self.dump_encoding = python_encoding(self.client_encoding)
        except LookupError as e:
            self._log(f"Backup failed: {e}", level=logging.ERROR)
            raise BackupError(str(e)) from e

        try:
            self.sink = ZipArchiveSink.open(self.temp_dir)
            self._log(f"Temporary archive: {self.sink.path}")

            file_count = self._archive_tree()
            self._dump_databases()

            self.sink.close()
            size = self.sink.size

        except (TreeWalkError, ArchiveError) as e:
            self._log(f"Backup failed: {e}", level=logging.ERROR)
            if self.sink is not None:
                self.sink.discard()
            raise BackupError(str(e)) from e

        except Exception:
            # Never leave a half-written archive behind
            if self.sink is not None:
                self.sink.discard()
            raise

        finally:
            if self._owns_connections:
                self.connections.close()

        self._log(f"Backup completed: {file_count} files, {len(self.outcomes)} databases ({size / 1024 / 1024:.2f} MB)")

        return BackupResult(
            archive_path=self.sink.path,
            size=size,
            file_count=file_count,
            databases=self.outcomes,
            warnings=self.warnings,
            logs=self.logs
        )

    def _archive_tree(self) -> int:
        if self.rules.excludes_everything:
            self._log("All files excluded, archiving databases only")

        archiver = TreeArchiver(self.rules, fail_fast=self.fs_fail_fast)
        file_count = archiver.build(self.root, self.sink)

        for warning in archiver.warnings:
            self._warn(warning)

        self._log(f"Added {file_count} files")
        return file_count

    def _dump_databases(self):
        dumper = TableDumper(self.client_encoding, self.enforce_table_filters)

        for spec in self.rules.databases:
            if not spec.name:
                continue
            self.outcomes.append(self._dump_database(dumper, spec))

    def _dump_database(self, dumper: TableDumper, spec: DatabaseSpec) -> DatabaseOutcome:
        try:
            connection = self.connections.activate(spec)
        except MissingCredentialsError as e:
            self._warn(str(e))
            return DatabaseOutcome(spec.name, DatabaseOutcome.SKIPPED, str(e))
        except DatabaseError as e:
            self._warn(f"Can't back up database {spec.name}: {e}")
            return DatabaseOutcome(spec.name, DatabaseOutcome.FAILED, str(e))

        try:
            script = dumper.dump(connection, spec)
            data = script.encode(self.dump_encoding)
        except (DumpError, DatabaseError, UnicodeEncodeError) as e:
            self._warn(f"Dump of database {spec.name} failed: {e}")
            return DatabaseOutcome(spec.name, DatabaseOutcome.FAILED, str(e))

        # Archive errors propagate: they are fatal for the whole run
        self.sink.add_entry(spec.entry_name, data)
        self._log(f"Dumped database {spec.name} ({len(data)} bytes of SQL)")
        return DatabaseOutcome(spec.name, DatabaseOutcome.SUCCESS)

    def _warn(self, message: str):
        self.warnings.append(message)
        self._log(f"Warning: {message}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level for the module logger
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def run_backup(config, root: Optional[str] = None, connections: Optional[ConnectionManager] = None) -> BackupResult:
    """
    Build a backup from application configuration.

    Args:
        config: Mapping with the BACKUP_* keys (see sitebackup.config.Config)
        root: Override for BACKUP_ROOT
        connections: Connection manager to use (a new one otherwise)

    Returns:
        BackupResult

    Raises:
        BackupError: If the backup cannot be produced
    """
    orchestrator = BackupOrchestrator(
        rules=RuleSet.from_config(config),
        root=root or config.get('BACKUP_ROOT'),
        temp_dir=config.get('TEMP_DIR'),
        client_encoding=config.get('BACKUP_CLIENT_ENCODING', DEFAULT_CLIENT_ENCODING),
        fs_fail_fast=config.get('BACKUP_FS_FAIL_FAST', True),
        enforce_table_filters=config.get('BACKUP_ENFORCE_TABLE_FILTERS', False),
        connections=connections
    )
    return orchestrator.run()
