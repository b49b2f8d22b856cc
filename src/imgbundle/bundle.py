"""Bundles and the expansion of a bundle into the images it depends on."""

import io
import logging
import tarfile
from collections import deque
from typing import List, Optional, Tuple

from .core.artifact import ImageArtifact
from .core.reference import is_bundle, parse_digest_reference
from .core.types import (
    ArtifactReference,
    Registry,
    UnprocessedImageURL,
    UnprocessedImageURLs,
)
from .exceptions import LockNotFoundError
from .lockconfig import IMAGES_LOCK_PATH, ImagesLock

logger = logging.getLogger(__name__)


def _normalize_member_name(name: str) -> str:
    if name.startswith("./"):
        name = name[2:]
    return name.lstrip("/")


def read_file_from_layer(layer: bytes, path: str) -> Optional[bytes]:
    """Return a file's content from a (possibly compressed) tar layer, or None."""
    try:
        with tarfile.open(fileobj=io.BytesIO(layer), mode="r:*") as tar:
            for member in tar.getmembers():
                if member.isfile() and _normalize_member_name(member.name) == path:
                    file_obj = tar.extractfile(member)
                    if file_obj is None:
                        return None
                    content = file_obj.read()
                    file_obj.close()
                    return content
    except tarfile.TarError:
        return None
    return None


def extract_images_lock(image: ImageArtifact, url: str) -> ImagesLock:
    """Find and parse the images lock embedded in a bundle image.

    Upper layers shadow lower ones, so layers are searched top down.

    Raises:
        LockNotFoundError: If no layer carries the lock
        SchemaError: If the embedded lock is invalid
    """
    for layer in reversed(image.layers()):
        content = read_file_from_layer(layer, IMAGES_LOCK_PATH)
        if content is not None:
            return ImagesLock.from_bytes(content)
    raise LockNotFoundError(f"Bundle '{url}' does not contain {IMAGES_LOCK_PATH}")


class Bundle:
    """A digest-qualified reference known to be a bundle.

    The embedded images lock is fetched on first use and cached for the
    lifetime of the value.
    """

    def __init__(self, reference: ArtifactReference) -> None:
        if not reference.digest:
            raise ValueError(f"Bundle reference '{reference}' must be digest qualified")
        self.reference = reference
        self._images_lock: Optional[ImagesLock] = None

    @property
    def url(self) -> str:
        return self.reference.url

    @property
    def tag(self) -> Optional[str]:
        return self.reference.tag

    async def images_lock(self, registry: Registry) -> ImagesLock:
        if self._images_lock is None:
            image = await registry.fetch_image(
                ArtifactReference(self.reference.repository, self.reference.digest)
            )
            self._images_lock = extract_images_lock(image, self.url)
        return self._images_lock

    def __repr__(self) -> str:
        return f"Bundle({self.url!r})"


async def expand(
    bundle: Bundle, registry: Registry, recursive: bool = False
) -> Tuple[ImagesLock, UnprocessedImageURLs]:
    """Expand a bundle into the copy requests for itself and its images.

    Each bundle contributes its lock entries followed by its own
    digest-qualified url (with its tag). With recursive=True, entries that
    are themselves bundles are expanded too; a visited-digest set stops
    cycles and repeated diamonds.

    Returns:
        The root bundle's images lock and the collected urls

    Raises:
        LockNotFoundError: If a bundle carries no embedded lock
        SchemaError: If an embedded lock is invalid
    """
    root_lock = await bundle.images_lock(registry)
    urls = UnprocessedImageURLs()
    visited = {bundle.reference.digest}
    worklist = deque([bundle])

    while worklist:
        current = worklist.popleft()
        lock = await current.images_lock(registry)
        for entry in lock.images:
            urls.add(UnprocessedImageURL(url=entry.image))
            if not recursive:
                continue
            reference = parse_digest_reference(entry.image)
            if reference.digest in visited:
                continue
            visited.add(reference.digest)
            if await is_bundle(reference, registry):
                logger.info("Found nested bundle %s in %s", entry.image, current.url)
                worklist.append(Bundle(reference))
        urls.add(UnprocessedImageURL(url=current.url, tag=current.tag))

    return root_lock, urls


async def check_for_bundles(images_lock: ImagesLock, registry: Registry) -> List[str]:
    """Return the lock entries that point at bundles."""
    bundles = []
    for entry in images_lock.images:
        if await is_bundle(parse_digest_reference(entry.image), registry):
            bundles.append(entry.image)
    return bundles
