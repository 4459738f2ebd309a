"""
Backup module for sitebackup.

This module handles archive assembly:
- Rules (filesystem include/exclude, ignored names, databases)
- File tree walking
- Zip archive sink
- MySQL connections and SQL dumps
- Orchestration of a complete backup run
"""

from .rules import RuleSet, DatabaseSpec, ConnectionOptions, EXCLUDE_ALL
from .tree import TreeArchiver, TreeWalkError
from .archive import ZipArchiveSink, ArchiveError, generate_archive_filename
from .connections import DatabaseConnection, ConnectionManager, QueryResult
from .dumper import TableDumper, DumpError
from .executor import BackupOrchestrator, BackupResult, BackupError, run_backup

__all__ = [
    'RuleSet',
    'DatabaseSpec',
    'ConnectionOptions',
    'EXCLUDE_ALL',
    'TreeArchiver',
    'TreeWalkError',
    'ZipArchiveSink',
    'ArchiveError',
    'generate_archive_filename',
    'DatabaseConnection',
    'ConnectionManager',
    'QueryResult',
    'TableDumper',
    'DumpError',
    'BackupOrchestrator',
    'BackupResult',
    'BackupError',
    'run_backup'
]
