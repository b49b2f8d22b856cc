"""Archive-mediated relocation: export to and import from a tar file."""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from ..core.types import ProcessedImages, Registry, UnprocessedImageURL, UnprocessedImageURLs
from ..tar.archive import TarArchive
from .image_set import ImageSet

logger = logging.getLogger(__name__)


class TarImageSet:
    """Exports image sets to archives and imports them into repositories.

    Uses the same per-image copy as ImageSet, with the archive standing in
    as destination (export) or source (import).
    """

    def __init__(self, image_set: ImageSet) -> None:
        self.image_set = image_set

    async def export(
        self,
        urls: UnprocessedImageURLs,
        archive_path: Union[str, Path],
        registry: Registry,
        bundle_url: Optional[str] = None,
    ) -> ProcessedImages:
        """Copy urls from the registry into a new archive.

        Images keep their source repository names so import can rebuild
        their references. Nothing is written to disk unless every image
        was fetched.

        Raises:
            RelocationError: If one or more images could not be fetched
            TarReadError: If the archive cannot be written
        """
        archive = TarArchive(archive_path)
        destination = archive.as_destination()

        logger.info("copy | exporting %d images to %s", len(urls), archive_path)
        processed = await self.image_set.copy(urls, registry, destination)

        await archive.save(
            destination, bundle_url=bundle_url, order=[image.url for image in processed]
        )
        logger.info("copy | wrote %s", archive_path)
        return processed

    async def import_(
        self,
        archive_path: Union[str, Path],
        destination_repository: str,
        registry: Registry,
    ) -> Tuple[ProcessedImages, Optional[str]]:
        """Copy every archived image into destination_repository.

        Returns:
            Completed copies and the original url of the bundle, if the
            archive holds one

        Raises:
            TarReadError: If the archive is missing or invalid
            RelocationError: If one or more images could not be written
        """
        archive = TarArchive(archive_path)
        source = await archive.as_source()

        urls = UnprocessedImageURLs(
            UnprocessedImageURL(url=entry.url, tag=entry.tag) for entry in source.entries.values()
        )
        logger.info("copy | importing %d images from %s", len(urls), archive_path)
        processed = await self.image_set.copy(urls, source, registry, destination_repository)
        return processed, TarArchive.bundle_url(source)
