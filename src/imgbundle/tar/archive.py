"""Local tar archives used as a relocation source or destination."""

import asyncio
import io
import json
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..core.artifact import (
    ImageArtifact,
    child_manifest_digests,
    is_index,
    manifest_blob_digests,
    parse_manifest,
)
from ..core.types import ArtifactReference
from ..exceptions import NotFoundError, TarReadError, ValidationError
from ..utils.validator import ARCHIVE_SCHEMA_VERSION, INDEX_FILE, blob_path, validate_archive
from .models import ArchiveEntry


def _add_file(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(content)
    info.mode = 0o644
    tar.addfile(info, fileobj=io.BytesIO(content))


def _extract_file_content(tar: tarfile.TarFile, filename: str) -> bytes:
    try:
        member = tar.getmember(filename)
        file_obj = tar.extractfile(member)
        if file_obj is None:
            raise TarReadError(f"Could not extract {filename}")
        content = file_obj.read()
        file_obj.close()
        return content
    except KeyError:
        raise TarReadError(f"File {filename} not found in tar")


def write_archive(
    path: Union[str, Path], entries: List[ArchiveEntry], blobs: Dict[str, bytes]
) -> None:
    """Write entries and their content-addressed blobs to a tar file.

    Every blob is stored once under blobs/<algorithm>/<hex>.
    """
    index = {
        "schemaVersion": ARCHIVE_SCHEMA_VERSION,
        "images": [entry.to_dict() for entry in entries],
    }
    try:
        with tarfile.open(path, "w") as tar:
            _add_file(tar, INDEX_FILE, json.dumps(index, indent=2).encode("utf-8"))
            for digest in sorted(blobs):
                _add_file(tar, blob_path(digest), blobs[digest])
    except (tarfile.TarError, OSError) as e:
        raise TarReadError(f"Failed to write archive {path}: {e}") from e


def read_archive(path: Union[str, Path]) -> Tuple[List[ArchiveEntry], Dict[str, bytes]]:
    """Read an archive written by write_archive.

    Returns:
        Recorded entries and every blob keyed by digest

    Raises:
        TarReadError: If the archive is invalid or cannot be read
    """
    path = Path(path)
    try:
        if not validate_archive(path):
            raise TarReadError(f"Invalid bundle archive: {path}")
    except ValidationError as e:
        raise TarReadError(str(e)) from e

    try:
        with tarfile.open(path, "r") as tar:
            index = json.loads(_extract_file_content(tar, INDEX_FILE))
            entries = [ArchiveEntry.from_dict(entry) for entry in index["images"]]

            blobs = {}
            for member in tar.getmembers():
                parts = member.name.split("/")
                if member.isfile() and len(parts) == 3 and parts[0] == "blobs":
                    blobs[f"{parts[1]}:{parts[2]}"] = _extract_file_content(tar, member.name)
    except (tarfile.TarError, json.JSONDecodeError, KeyError) as e:
        raise TarReadError(f"Failed to read archive {path}: {e}") from e

    return entries, blobs


class ArchiveStore:
    """In-memory view of archive content with the registry interface.

    Entries are keyed by their original url; content is keyed by digest
    so images shared between repositories are stored once.
    """

    def __init__(
        self,
        entries: Optional[List[ArchiveEntry]] = None,
        blobs: Optional[Dict[str, bytes]] = None,
    ) -> None:
        self.entries: Dict[str, ArchiveEntry] = {e.url: e for e in entries or []}
        self.blobs: Dict[str, bytes] = dict(blobs or {})

    def _entry_for(self, ref: ArtifactReference) -> ArchiveEntry:
        for entry in self.entries.values():
            if ref.digest and entry.digest == ref.digest:
                return entry
            if not ref.digest and entry.url.split("@")[0] == ref.repository and entry.tag == ref.tag:
                return entry
        raise NotFoundError(f"'{ref}' not found in archive")

    def _load(self, digest: str, media_type: Optional[str]) -> ImageArtifact:
        if digest not in self.blobs:
            raise TarReadError(f"Archive is missing manifest {digest}")
        manifest = self.blobs[digest]
        data = parse_manifest(manifest)
        media_type = data.get("mediaType") or media_type or ""

        if is_index(data, media_type):
            children_media = {c["digest"]: c.get("mediaType") for c in data.get("manifests", [])}
            children = [self._load(d, children_media[d]) for d in child_manifest_digests(data)]
            return ImageArtifact(manifest=manifest, media_type=media_type, children=children)

        blobs = {}
        for blob_digest in manifest_blob_digests(data):
            if blob_digest not in self.blobs:
                raise TarReadError(f"Archive is missing blob {blob_digest}")
            blobs[blob_digest] = self.blobs[blob_digest]
        return ImageArtifact(manifest=manifest, media_type=media_type, blobs=blobs)

    async def resolve_digest(self, ref: ArtifactReference) -> str:
        return ref.digest or self._entry_for(ref).digest

    async def fetch_manifest(self, ref: ArtifactReference) -> Tuple[bytes, str]:
        entry = self._entry_for(ref)
        return self.blobs[entry.digest], entry.media_type

    async def fetch_image(self, ref: ArtifactReference) -> ImageArtifact:
        entry = self._entry_for(ref)
        return self._load(entry.digest, entry.media_type)

    async def write_image(
        self, ref: ArtifactReference, image: ImageArtifact, tag: Optional[str] = None
    ) -> str:
        for artifact in image.walk():
            self.blobs[artifact.digest] = artifact.manifest
            self.blobs.update(artifact.blobs)
        self.entries[ref.url] = ArchiveEntry(
            url=ref.url, digest=image.digest, media_type=image.media_type, tag=tag
        )
        return image.digest

    async def tag_image(self, ref: ArtifactReference, tag: str) -> str:
        # An entry carries a single tag
        entry = self.entries.get(ref.url)
        if entry is None:
            raise NotFoundError(f"'{ref.url}' not found in archive")
        entry.tag = tag
        return entry.digest

    async def exists(self, ref: ArtifactReference) -> bool:
        return ref.url in self.entries


class TarArchive:
    """A tar file on disk holding copied artifacts.

    Reading and writing run in the default executor, like other blocking
    file I/O.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    async def as_source(self) -> ArchiveStore:
        """Load the archive for reading.

        Raises:
            TarReadError: If the archive is missing or invalid
        """
        if not self.path.exists():
            raise TarReadError(f"Tar file not found: {self.path}")
        loop = asyncio.get_running_loop()
        entries, blobs = await loop.run_in_executor(None, read_archive, self.path)
        return ArchiveStore(entries, blobs)

    def as_destination(self) -> ArchiveStore:
        """Return an empty store to copy into; persist it with save()."""
        return ArchiveStore()

    async def save(
        self,
        store: ArchiveStore,
        bundle_url: Optional[str] = None,
        order: Optional[List[str]] = None,
    ) -> None:
        """Write a destination store to disk, marking the bundle entry.

        Entries are written in `order` (urls) when given, else in the order
        they were copied in.
        """
        entries = list(store.entries.values())
        if order is not None:
            entries = [store.entries[url] for url in order]
        for entry in entries:
            entry.bundle = entry.url == bundle_url
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_archive, self.path, entries, store.blobs)

    @staticmethod
    def bundle_url(store: ArchiveStore) -> Optional[str]:
        for entry in store.entries.values():
            if entry.bundle:
                return entry.url
        return None
