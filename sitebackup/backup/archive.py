"""
Zip archive sink for backups.

The archive is written to a fresh temporary file and receives two kinds
of entries:
- files copied from the backup root
- in-memory text (the SQL dumps)

Entry names are '/'-separated and never start with a slash.
"""

import os
import tempfile
import zipfile
from datetime import datetime
from typing import Optional


DEFAULT_ARCHIVE_NAME_MASK = 'backup_%DATE%.zip'


class ArchiveError(Exception):
    """Raised when the archive cannot be created, written or finalized."""
    pass


def _entry_name(name: str) -> str:
    entry = name.replace('\\', '/').lstrip('/')
    if not entry:
        raise ArchiveError(f"Invalid archive entry name: {name!r}")
    return entry


class ZipArchiveSink:
    """
    Writer for a zip archive stored in a temporary file.

    Use ZipArchiveSink.open() to create one. The sink is closed exactly once;
    further close() calls are no-ops.
    """

    def __init__(self, path: str, zip_file: zipfile.ZipFile):
        self.path = path
        self._zip = zip_file
        self.entries = 0

    @classmethod
    def open(cls, temp_dir: Optional[str] = None, prefix: str = 'bkp') -> 'ZipArchiveSink':
        """
        Create a new archive backed by a fresh temporary file.

        Args:
            temp_dir: Directory for the temporary file (system default if None)
            prefix: Temporary file name prefix

        Returns:
            Open ZipArchiveSink

        Raises:
            ArchiveError: If the temporary file or zip writer cannot be created
        """
        try:
            if temp_dir:
                os.makedirs(temp_dir, exist_ok=True)
            fd, path = tempfile.mkstemp(prefix=prefix, suffix='.zip', dir=temp_dir)
            os.close(fd)
        except OSError as e:
            raise ArchiveError(f"Failed to create temporary archive file: {e}")

        try:
            zip_file = zipfile.ZipFile(path, 'w', zipfile.ZIP_DEFLATED)
        except (OSError, zipfile.BadZipFile) as e:
            os.remove(path)
            raise ArchiveError(f"Failed to open archive {path}: {e}")

        return cls(path, zip_file)

    @property
    def closed(self) -> bool:
        return self._zip is None

    def _writer(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise ArchiveError("Archive is already closed")
        return self._zip

    def add_file(self, source_path: str, entry_name: str):
        """
        Copy a file from disk into the archive.

        Raises:
            ArchiveError: If the file cannot be read or written
        """
        writer = self._writer()
        try:
            writer.write(source_path, _entry_name(entry_name))
        except OSError as e:
            raise ArchiveError(f"Failed to add {source_path} to archive: {e}")
        self.entries += 1

    def add_entry(self, entry_name: str, data: bytes):
        """
        Store raw bytes as an archive entry.

        Raises:
            ArchiveError: If the entry cannot be written
        """
        writer = self._writer()
        try:
            writer.writestr(_entry_name(entry_name), data)
        except OSError as e:
            raise ArchiveError(f"Failed to write archive entry {entry_name}: {e}")
        self.entries += 1

    def add_entry_from_text(self, entry_name: str, content: str, encoding: str = 'utf-8'):
        """
        Store text as an archive entry, encoded with encoding.

        Raises:
            ArchiveError: If the text cannot be encoded or written
        """
        try:
            data = content.encode(encoding)
        except UnicodeEncodeError as e:
            raise ArchiveError(f"Failed to encode archive entry {entry_name}: {e}")
        self.add_entry(entry_name, data)

    def close(self):
        """
        Finalize the archive.

        Raises:
            ArchiveError: If the central directory cannot be written
        """
        if self._zip is None:
            return

        zip_file, self._zip = self._zip, None
        try:
            zip_file.close()
        except OSError as e:
            raise ArchiveError(f"Failed to finalize archive {self.path}: {e}")

    def discard(self):
        """Close the writer and remove the temporary file (used when a build fails)."""
        if self._zip is not None:
            zip_file, self._zip = self._zip, None
            try:
                zip_file.close()
            except OSError:
                pass
        if os.path.exists(self.path):
            os.remove(self.path)

    @property
    def size(self) -> int:
        return get_archive_size(self.path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self.discard()
        return False


def generate_archive_filename(mask: str = DEFAULT_ARCHIVE_NAME_MASK, when: Optional[datetime] = None) -> str:
    """
    Build the download filename from a mask.

    Supported placeholders: %DATE% (YYYY.MM.DD)

    Args:
        mask: Filename mask, e.g. "backup_%DATE%.zip"
        when: Date to substitute (now if None)

    Returns:
        Filename (without path)
    """
    when = when or datetime.now()
    return mask.replace('%DATE%', when.strftime('%Y.%m.%d'))


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")
