"""Prefer copies of a bundle's images that already sit in the bundle's repository."""

import logging
from typing import List

from .core.reference import image_with_repository, parse_digest_reference
from .core.types import Registry, UnprocessedImageURL, UnprocessedImageURLs
from .exceptions import NotFoundError, RegistryUnavailableError
from .imageset.image_set import DEFAULT_CONCURRENCY
from .imageset.pool import run_bounded

logger = logging.getLogger(__name__)


def candidate_urls(url: str, bundle_repository: str) -> List[str]:
    """Lookup order for one image: collocated with the bundle first, then original."""
    collocated = image_with_repository(url, bundle_repository)
    if collocated == url:
        return [url]
    return [collocated, url]


async def check_images_exist(candidates: List[str], registry: Registry) -> str:
    """Return the first candidate url that exists in its repository.

    Raises:
        NotFoundError: If no candidate exists
        RegistryUnavailableError: If a check could not be performed
    """
    for url in candidates:
        if await registry.exists(parse_digest_reference(url)):
            return url
    raise NotFoundError(f"Checking image existence: none of {', '.join(candidates)} found")


async def resolve_collocated(
    urls: UnprocessedImageURLs,
    bundle_url: str,
    registry: Registry,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> UnprocessedImageURLs:
    """Rewrite each url to its collocated copy when that copy exists.

    The bundle's own entry is never rewritten. Existence checks run
    concurrently; the result keeps the input order and size. A missing
    collocated copy is a normal outcome and keeps the original url.

    Raises:
        RegistryUnavailableError: If any existence check could not be performed
    """
    bundle_repository = parse_digest_reference(bundle_url).repository

    async def check(image: UnprocessedImageURL) -> UnprocessedImageURL:
        if image.url == bundle_url:
            return image

        collocated, *_ = candidate_urls(image.url, bundle_repository)
        if collocated == image.url:
            return image

        if await registry.exists(parse_digest_reference(collocated)):
            logger.info("Found %s collocated with bundle as %s", image.url, collocated)
            return UnprocessedImageURL(url=collocated, tag=image.tag)
        return image

    outcomes = await run_bounded(urls.all(), check, concurrency)

    failures = [(o.item.url, o.error) for o in outcomes if not o.ok]
    if failures:
        details = "; ".join(f"{url}: {error}" for url, error in failures)
        raise RegistryUnavailableError(
            f"Checking bundle repository for collocated images: {details}"
        ) from failures[0][1]

    return UnprocessedImageURLs(o.result for o in outcomes)
