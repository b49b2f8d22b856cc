"""Bundle archive reading and writing."""

from .archive import ArchiveStore, TarArchive, read_archive, write_archive
from .models import ArchiveEntry

__all__ = ["ArchiveEntry", "ArchiveStore", "TarArchive", "read_archive", "write_archive"]
