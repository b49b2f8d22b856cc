"""Example: relocate a bundle to another repository and through a tar archive."""

import asyncio
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, "src")

from imgbundle import (
    CopyOptions,
    RegistryConfig,
    RegistryError,
    RelocationError,
    copy_with_registry,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

REGISTRY = os.getenv("REGISTRY", "localhost:15000")


async def relocate_to_repository(config):
    """Copy a bundle and its images to another repository, writing a BundleLock."""
    options = CopyOptions(
        bundle=f"{REGISTRY}/demo/app-bundle:v1",
        to_repo=f"{REGISTRY}/mirror/app-bundle",
        lock_output="app-bundle.lock.yml",
    )
    result = await copy_with_registry(options, config)

    for image in result.processed:
        logger.info(f"  {image.source.url} -> {image.url}")
    logger.info(f"BundleLock written to {options.lock_output}")


async def relocate_through_archive(config):
    """Export the bundle to a tar file, then import it into a second repository."""
    await copy_with_registry(
        CopyOptions(bundle=f"{REGISTRY}/demo/app-bundle:v1", to_tar="app-bundle.tar"),
        config,
    )
    logger.info("Exported app-bundle.tar")

    result = await copy_with_registry(
        CopyOptions(from_tar="app-bundle.tar", to_repo=f"{REGISTRY}/airgapped/app-bundle"),
        config,
    )
    logger.info(f"Imported {len(result.processed)} images, bundle {result.bundle_url}")


async def main():
    config = RegistryConfig(insecure_registries=(REGISTRY,))

    try:
        await relocate_to_repository(config)
        await relocate_through_archive(config)
    except RelocationError as e:
        logger.error(f"Some images failed: {e.failed_urls}")
        logger.info(f"Copied before failure: {len(e.processed or [])}")
    except RegistryError as e:
        logger.error(f"Registry error: {e}")


if __name__ == "__main__":
    asyncio.run(main())
