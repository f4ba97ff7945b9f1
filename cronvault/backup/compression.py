"""
Zip archive assembly for backup runs.

Layout:
- database/<collection>.json: serialized documents
- files/<path>: raw object bytes, hierarchy preserved
- backup-metadata.json: manifest, always written last

Entries are compressed straight into a spooled temporary file, so only the
entry currently being written has to be held in memory; the archive itself
spills to disk once it grows past the spool size.
"""

import json
import logging
import tempfile
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, BinaryIO, Dict, Iterable, List, Optional

from .sources import CollectionPayload, ObjectPayload


logger = logging.getLogger(__name__)

MANIFEST_NAME = 'backup-metadata.json'
DATABASE_DIR = 'database'
FILES_DIR = 'files'
ARCHIVE_EXTENSION = '.zip'
ARCHIVE_CONTENT_TYPE = 'application/zip'

# Zip64 is needed for entries at or above 2 GiB
_ZIP64_LIMIT = (1 << 31) - 1
_CHUNK_SIZE = 1024 * 1024


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


@dataclass
class ArchiveArtifact:
    """A finished archive, ready for upload."""
    file_name: str
    total_entries: int
    total_size_bytes: int
    stream: BinaryIO

    def read_bytes(self) -> bytes:
        self.stream.seek(0)
        data = self.stream.read()
        self.stream.seek(0)
        return data

    def close(self):
        self.stream.close()


def generate_archive_filename(now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a run.

    Format: backup-{YYYY-MM-DD}.zip (UTC date). Runs on the same day share
    a name, so a later run replaces the earlier upload.
    """
    now = now or datetime.now(timezone.utc)
    return f"backup-{now.date().isoformat()}{ARCHIVE_EXTENSION}"


def build_manifest(
    collections: List[CollectionPayload],
    objects: List[ObjectPayload],
    created_at: datetime,
    database_name: Optional[str] = None
) -> Dict[str, Any]:
    """Summarize the archived collections and objects."""
    return {
        'createdAt': created_at.isoformat(),
        'database': {
            'name': database_name,
            'collections': [
                {
                    'name': c.name,
                    'documentCount': c.document_count,
                    'sizeBytes': len(c.data)
                }
                for c in collections
            ]
        },
        'files': [
            {
                'path': o.path,
                'contentType': o.content_type,
                'sizeBytes': o.size
            }
            for o in objects
        ]
    }


class ArchiveWriter:
    """
    Incremental zip writer over a spill-to-disk buffer.

    Call add_entry() for each entry, then finish() to close the zip and get
    the artifact. abort() discards everything written so far.
    """

    def __init__(self, file_name: str, spool_max_size: int = 64 * 1024 * 1024):
        self.file_name = file_name
        self.entry_count = 0
        self._buffer = tempfile.SpooledTemporaryFile(max_size=spool_max_size, mode='w+b')
        self._zip = zipfile.ZipFile(
            self._buffer,
            mode='w',
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=9
        )

    def add_entry(self, name: str, data: bytes):
        """Compress one entry into the archive."""
        view = memoryview(data)
        with self._zip.open(name, mode='w', force_zip64=len(data) >= _ZIP64_LIMIT) as entry:
            for offset in range(0, len(view), _CHUNK_SIZE):
                entry.write(view[offset:offset + _CHUNK_SIZE])

        self.entry_count += 1

    def finish(self) -> BinaryIO:
        """
        Close the zip and return the buffer, rewound.

        Returns:
            Readable binary stream with the complete archive
        """
        self._zip.close()
        self._buffer.seek(0)
        return self._buffer

    def abort(self):
        """Discard the partial archive."""
        try:
            self._zip.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing aborted archive: {e}")
        self._buffer.close()


class ArchiveComposer:
    """Builds the backup archive from snapshot and collection results."""

    def __init__(self, spool_max_size: int = 64 * 1024 * 1024):
        """
        Args:
            spool_max_size: Bytes kept in memory before the archive spills to disk
        """
        self.spool_max_size = spool_max_size

    def compose(
        self,
        collections: Iterable[CollectionPayload],
        objects: Iterable[ObjectPayload],
        database_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ArchiveArtifact:
        """
        Create the archive.

        Args:
            collections: Database collection payloads
            objects: Object store payloads
            database_name: Recorded in the manifest
            now: Creation time (defaults to the current UTC time)

        Returns:
            ArchiveArtifact with a rewound stream

        Raises:
            ArchiveError: If any entry cannot be written; no partial archive
                is returned
        """
        now = now or datetime.now(timezone.utc)
        file_name = generate_archive_filename(now)
        writer = ArchiveWriter(file_name, self.spool_max_size)

        archived_collections = []
        archived_objects = []

        try:
            for collection in collections:
                writer.add_entry(f"{DATABASE_DIR}/{collection.name}.json", collection.data)
                archived_collections.append(collection)

            for obj in objects:
                writer.add_entry(f"{FILES_DIR}/{obj.path}", obj.data)
                archived_objects.append(obj)

            manifest = build_manifest(archived_collections, archived_objects, now, database_name)
            writer.add_entry(MANIFEST_NAME, json.dumps(manifest, indent=2).encode('utf-8'))

            stream = writer.finish()
        except Exception as e:
            writer.abort()
            raise ArchiveError(f"Failed to create archive: {e}")

        stream.seek(0, 2)
        total_size = stream.tell()
        stream.seek(0)

        return ArchiveArtifact(
            file_name=file_name,
            total_entries=len(archived_collections) + len(archived_objects),
            total_size_bytes=total_size,
            stream=stream
        )
