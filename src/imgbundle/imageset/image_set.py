"""Concurrent, digest-preserving copy of image sets."""

import logging
from typing import Optional

from ..core.reference import parse_digest_reference
from ..core.types import (
    ArtifactReference,
    ProcessedImage,
    ProcessedImages,
    Registry,
    UnprocessedImageURL,
    UnprocessedImageURLs,
)
from ..exceptions import IntegrityError, NotFoundError, RelocationError
from ..utils.digest import verify_digest
from .pool import run_bounded

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


class ImageSet:
    """Copies sets of images with a bounded number of copies in flight."""

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency

    async def relocate(
        self,
        urls: UnprocessedImageURLs,
        destination_repository: str,
        registry: Registry,
    ) -> ProcessedImages:
        """Copy every url into destination_repository under its own digest.

        Returns:
            Completed copies in input order

        Raises:
            ReferenceParseError: If any url is not digest qualified (before copying)
            RelocationError: If one or more copies failed; carries the successes
        """
        return await self.copy(urls, registry, registry, destination_repository)

    async def copy(
        self,
        urls: UnprocessedImageURLs,
        source: Registry,
        destination: Registry,
        destination_repository: Optional[str] = None,
    ) -> ProcessedImages:
        """Copy urls from source to destination.

        When destination_repository is None each image keeps its source
        repository name (used when the destination is an archive).
        """
        requests = urls.all()
        for url in requests:
            parse_digest_reference(url.url)

        async def unit(url: UnprocessedImageURL) -> ProcessedImage:
            return await self.copy_image(url, source, destination, destination_repository)

        outcomes = await run_bounded(requests, unit, self.concurrency)

        processed = ProcessedImages()
        errors = []
        for outcome in outcomes:
            if outcome.ok:
                processed.add(outcome.result)
            else:
                logger.warning("copy | failed %s: %s", outcome.item.url, outcome.error)
                errors.append((outcome.item.url, outcome.error))

        if errors:
            raise RelocationError(errors, processed)
        return processed

    async def copy_image(
        self,
        url: UnprocessedImageURL,
        source: Registry,
        destination: Registry,
        destination_repository: Optional[str] = None,
    ) -> ProcessedImage:
        """Copy one image or index, byte for byte.

        An artifact whose digest already exists at the destination is not
        written again; only a missing or stale tag is pointed at it.

        Raises:
            IntegrityError: If fetched or written content does not match the source digest
        """
        src = parse_digest_reference(url.url)
        dest = ArtifactReference(
            repository=destination_repository or src.repository,
            digest=src.digest,
            tag=url.tag,
        )

        if await destination.exists(dest.with_tag(None)):
            if url.tag and not await self._tag_points_at(destination, dest):
                logger.info("copy | already present %s, tagging as %s", dest.url, url.tag)
                await destination.tag_image(dest.with_tag(None), url.tag)
            else:
                logger.info("copy | already present %s", dest.url)
            return ProcessedImage(source=url, destination=dest)

        logger.info("copy | copying %s -> %s", url.url, dest.url)
        image = await source.fetch_image(ArtifactReference(src.repository, src.digest))
        if not verify_digest(image.manifest, src.digest):
            raise IntegrityError(
                f"Fetched manifest for {url.url} does not match its digest (got {image.digest})"
            )

        written = await destination.write_image(dest.with_tag(None), image, tag=url.tag)
        if written != src.digest:
            raise IntegrityError(
                f"Destination {dest.url} reported digest {written}, expected {src.digest}"
            )
        return ProcessedImage(source=url, destination=dest)

    @staticmethod
    async def _tag_points_at(destination: Registry, dest: ArtifactReference) -> bool:
        try:
            current = await destination.resolve_digest(
                ArtifactReference(repository=dest.repository, tag=dest.tag)
            )
        except NotFoundError:
            return False
        return current == dest.digest
