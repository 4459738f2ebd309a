"""
Backup rules: what goes into the archive.

A RuleSet collects:
- Filesystem exclude paths (relative to the backup root)
- Filesystem include paths (only these subtrees are walked when present)
- Ignored names (bare file/directory names skipped in every directory)
- Database specifications (one SQL dump per database)

The rule set is built up front by the caller and only read while the
archive is assembled.
"""

from typing import List, Dict, Any, Optional, Iterable


# Excluding this path skips the filesystem walk entirely (database dumps only)
EXCLUDE_ALL = '*'

DEFAULT_DB_HOST = 'localhost'


def _split_list(value) -> List[str]:
    """Accept either a list or a comma separated string."""
    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    return [str(item) for item in value]


class ConnectionOptions:
    """
    Connection override for a single database.

    A database without options (or with an incomplete user/password pair)
    reuses whatever connection is active when its turn comes.
    """

    def __init__(self, host: str = None, user: str = None, password: str = None):
        self.host = host or DEFAULT_DB_HOST
        self.user = user or ''
        self.password = password or ''

    @property
    def has_credentials(self) -> bool:
        return bool(self.user) and bool(self.password)

    @property
    def key(self) -> tuple:
        """Cache key for the connection manager."""
        return (self.host, self.user)

    def __eq__(self, other):
        if not isinstance(other, ConnectionOptions):
            return NotImplemented
        return (self.host, self.user, self.password) == (other.host, other.user, other.password)

    def __repr__(self):
        return f'<ConnectionOptions {self.user}@{self.host}>'


class DatabaseSpec:
    """One database to export as <name>.sql."""

    def __init__(
        self,
        name: str,
        connection: Optional[ConnectionOptions] = None,
        include_tables: Iterable[str] = None,
        exclude_tables: Iterable[str] = None
    ):
        """
        Args:
            name: Database name. Specs with an empty name are skipped.
            connection: Optional connection override
            include_tables: Tables to dump (empty = all)
            exclude_tables: Tables to leave out
        """
        self.name = name or ''
        self.connection = connection
        self.include_tables = list(include_tables or [])
        self.exclude_tables = list(exclude_tables or [])

    @property
    def has_credentials(self) -> bool:
        return self.connection is not None and self.connection.has_credentials

    @property
    def entry_name(self) -> str:
        """Archive entry name for this database's dump."""
        return f"{self.name}.sql"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatabaseSpec':
        """
        Build a spec from a configuration dict.

        Recognised keys: name, host, user, password, include_tables, exclude_tables.
        """
        connection = None
        if data.get('host') or data.get('user') or data.get('password'):
            connection = ConnectionOptions(
                host=data.get('host'),
                user=data.get('user'),
                password=data.get('password')
            )

        return cls(
            name=data.get('name', ''),
            connection=connection,
            include_tables=_split_list(data.get('include_tables')),
            exclude_tables=_split_list(data.get('exclude_tables'))
        )

    def __eq__(self, other):
        if not isinstance(other, DatabaseSpec):
            return NotImplemented
        return (
            self.name == other.name
            and self.connection == other.connection
            and self.include_tables == other.include_tables
            and self.exclude_tables == other.exclude_tables
        )

    def __repr__(self):
        return f'<DatabaseSpec {self.name!r} override={self.connection is not None}>'


class RuleSet:
    """
    Filesystem and database rules for one backup run.

    All add_* operations are idempotent: adding an entry that is already
    present leaves the rule set unchanged.
    """

    def __init__(self):
        self.fs_exclude: List[str] = []
        self.fs_include: List[str] = []
        self.ignored_names: List[str] = []
        self.databases: List[DatabaseSpec] = []

    def add_exclude_path(self, path: str):
        """
        Exclude a root-relative file or directory path.

        Adding EXCLUDE_ALL ("*") excludes every file; the archive will then
        only hold database dumps.
        """
        if path not in self.fs_exclude:
            self.fs_exclude.append(path)

    def add_include_path(self, path: str):
        """Walk only this root-relative subtree (may be called several times)."""
        if path not in self.fs_include:
            self.fs_include.append(path)

    def add_ignored_name(self, name: str):
        """Skip files or directories with this exact name at every depth (e.g. ".htaccess")."""
        if name not in self.ignored_names:
            self.ignored_names.append(name)

    def add_database(
        self,
        spec,
        connection: Optional[ConnectionOptions] = None,
        include_tables: Iterable[str] = None,
        exclude_tables: Iterable[str] = None
    ):
        """
        Add a database to dump.

        Args:
            spec: DatabaseSpec instance, or the database name
            connection: Connection override (only used when spec is a name)
            include_tables: Tables to dump (only used when spec is a name)
            exclude_tables: Tables to skip (only used when spec is a name)
        """
        if not isinstance(spec, DatabaseSpec):
            spec = DatabaseSpec(spec, connection, include_tables, exclude_tables)

        if spec not in self.databases:
            self.databases.append(spec)

    @property
    def excludes_everything(self) -> bool:
        return EXCLUDE_ALL in self.fs_exclude

    @classmethod
    def from_config(cls, config) -> 'RuleSet':
        """
        Build a rule set from application configuration.

        Args:
            config: Mapping with BACKUP_EXCLUDE, BACKUP_INCLUDE,
                BACKUP_IGNORED_NAMES and BACKUP_DATABASES keys (all optional)

        Returns:
            Populated RuleSet
        """
        rules = cls()

        for path in _split_list(config.get('BACKUP_EXCLUDE')):
            rules.add_exclude_path(path)
        for path in _split_list(config.get('BACKUP_INCLUDE')):
            rules.add_include_path(path)
        for name in _split_list(config.get('BACKUP_IGNORED_NAMES')):
            rules.add_ignored_name(name)
        for entry in config.get('BACKUP_DATABASES') or []:
            rules.add_database(DatabaseSpec.from_dict(entry))

        return rules

    def __repr__(self):
        return (
            f'<RuleSet exclude={len(self.fs_exclude)} include={len(self.fs_include)} '
            f'ignored={len(self.ignored_names)} databases={len(self.databases)}>'
        )
