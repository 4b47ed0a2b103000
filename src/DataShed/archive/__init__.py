"""Bundle archival: sealing, verification and restore."""

from DataShed.archive.archiver import Archiver, BuiltBundle, Selector
from DataShed.archive.format import Manifest, ManifestEntry, verify_archive, write_archive
from DataShed.archive.restore import restore_bundle

__all__ = [
    "Archiver",
    "BuiltBundle",
    "Manifest",
    "ManifestEntry",
    "Selector",
    "restore_bundle",
    "verify_archive",
    "write_archive",
]
