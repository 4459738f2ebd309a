"""
Filesystem tree walker for backup archives.

Walks the backup root according to a RuleSet and feeds every accepted file
into an archive sink under its root-relative name.

Rules applied to each directory entry, at every depth:
1. Entries whose bare name is an ignored name are skipped
2. Entries whose root-relative path is excluded are skipped
3. Directories are descended into, files are added
"""

import os
import logging
from typing import Iterator, List, Tuple

from .rules import RuleSet


logger = logging.getLogger(__name__)


class TreeWalkError(Exception):
    """Raised when part of the backup tree cannot be read."""
    pass


def normalize_relative_path(path: str) -> str:
    """Return a root-relative path with '/' separators and no leading or trailing slash."""
    return path.replace('\\', '/').strip('/')


def _covers(parent: str, path: str) -> bool:
    return parent == '' or path.startswith(parent + '/')


class TreeArchiver:
    """
    Walks the backup root and streams accepted files into an archive sink.
    """

    def __init__(self, rules: RuleSet, fail_fast: bool = True):
        """
        Args:
            rules: Rules deciding which files enter the archive
            fail_fast: Abort the walk on the first unreadable directory.
                When False the subtree is skipped and a warning recorded.
        """
        self.rules = rules
        self.fail_fast = fail_fast
        self.warnings: List[str] = []
        self._excluded = set(rules.fs_exclude)
        self._ignored = set(rules.ignored_names)

    def _start_prefixes(self) -> List[str]:
        if self.rules.excludes_everything:
            return []
        if not self.rules.fs_include:
            return ['']
        prefixes = []
        for path in self.rules.fs_include:
            prefix = normalize_relative_path(path)
            if prefix not in prefixes:
                prefixes.append(prefix)

        # A path inside another included path would be archived twice
        return [
            prefix for prefix in prefixes
            if not any(_covers(other, prefix) for other in prefixes if other != prefix)
        ]

    def _accepts(self, name: str, relative_path: str) -> bool:
        if name in self._ignored:
            return False
        if relative_path in self._excluded:
            return False
        return True

    def _fail(self, message: str, error: Exception):
        if self.fail_fast:
            raise TreeWalkError(f"{message}: {error}") from error
        logger.warning(f"{message}, skipping: {error}")
        self.warnings.append(f"{message}: {error}")

    def _list_directory(self, directory: str) -> List[os.DirEntry]:
        with os.scandir(directory) as entries:
            return sorted(entries, key=lambda entry: entry.name)

    def iter_files(self, root: str) -> Iterator[Tuple[str, str]]:
        """
        Lazily yield (absolute_path, archive_name) for every accepted file.

        Depth-first over an explicit stack of (directory, prefix) pairs, so
        files can be streamed into the archive as they are found.

        Args:
            root: Backup root directory

        Yields:
            Tuples of absolute file path and '/'-separated root-relative name

        Raises:
            TreeWalkError: If a directory cannot be read (fail-fast mode)
        """
        root = os.path.abspath(root)

        for start in self._start_prefixes():
            start_path = os.path.join(root, *start.split('/')) if start else root

            if start and os.path.isfile(start_path):
                yield start_path, start
                continue

            stack = [(start_path, start)]

            while stack:
                directory, prefix = stack.pop()

                try:
                    entries = self._list_directory(directory)
                except OSError as e:
                    self._fail(f"Cannot read directory '{prefix or '.'}'", e)
                    continue

                subdirectories = []
                for entry in entries:
                    relative_path = f"{prefix}/{entry.name}" if prefix else entry.name

                    if not self._accepts(entry.name, relative_path):
                        continue

                    try:
                        if entry.is_dir(follow_symlinks=False):
                            subdirectories.append((entry.path, relative_path))
                        elif entry.is_file():
                            yield entry.path, relative_path
                    except OSError as e:
                        self._fail(f"Cannot stat '{relative_path}'", e)

                # Reversed so the next pop visits subdirectories in name order
                stack.extend(reversed(subdirectories))

    def build(self, root: str, sink) -> int:
        """
        Add every accepted file under root to the sink.

        Args:
            root: Backup root directory
            sink: Archive sink exposing add_file(source_path, entry_name)

        Returns:
            Number of files added

        Raises:
            TreeWalkError: If a directory cannot be read (fail-fast mode)
        """
        count = 0
        for absolute_path, archive_name in self.iter_files(root):
            sink.add_file(absolute_path, archive_name)
            count += 1

        logger.debug(f"Added {count} files from {root}")
        return count
