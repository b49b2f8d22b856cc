"""Async copy of bundles, images and lock files between repositories and archives."""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import aiofiles

from .bundle import Bundle, check_for_bundles, expand
from .collocation import resolve_collocated
from .core.reference import check_kind, parse_reference, resolve_reference
from .core.registry_client import RegistryClient
from .core.types import (
    ProcessedImages,
    Registry,
    RegistryConfig,
    UnprocessedImageURL,
    UnprocessedImageURLs,
)
from .exceptions import ReferenceParseError, SchemaError, ValidationError, WrongArtifactKindError
from .imageset import DEFAULT_CONCURRENCY, ImageSet, TarImageSet
from .lockconfig import LOCK_FILE_MODE, BundleLock, ImagesLock, parse_lock

logger = logging.getLogger(__name__)

Lock = Union[BundleLock, ImagesLock]


@dataclass
class CopyOptions:
    """Where to copy from and to.

    Exactly one source (bundle, image, lock_path, from_tar) and exactly one
    destination (to_repo, to_tar) must be set.
    """

    bundle: Optional[str] = None
    image: Optional[str] = None
    lock_path: Optional[str] = None
    from_tar: Optional[str] = None
    to_repo: Optional[str] = None
    to_tar: Optional[str] = None
    lock_output: Optional[str] = None
    concurrency: int = DEFAULT_CONCURRENCY
    recursive: bool = False

    def validate(self) -> None:
        """Reject option combinations that cannot be copied.

        Raises:
            ValidationError: On missing, duplicate or conflicting options
        """
        sources = [s for s in (self.lock_path, self.from_tar, self.bundle, self.image) if s]
        if len(sources) != 1:
            raise ValidationError(
                "Expected either --lock, --bundle (-b), --image (-i), or --from-tar as a source"
            )
        if bool(self.to_repo) == bool(self.to_tar):
            raise ValidationError("Expected either --to-tar or --to-repo")
        if self.from_tar and self.to_tar:
            raise ValidationError(
                "Cannot use tar source (--from-tar) with tar destination (--to-tar)"
            )
        if self.to_tar and self.lock_output:
            raise ValidationError("Cannot output lock file with tar destination")
        if self.concurrency < 1:
            raise ValidationError(f"Expected concurrency of at least 1, got {self.concurrency}")
        if self.to_repo:
            try:
                destination = parse_reference(self.to_repo)
            except ReferenceParseError as e:
                raise ValidationError(f"Building import repository ref: {e}") from e
            if destination.tag or destination.digest:
                raise ValidationError(
                    f"Expected --to-repo to be a repository without tag or digest, got '{self.to_repo}'"
                )


@dataclass
class CollectedImages:
    """Copy requests gathered from a source, before any copying."""

    urls: UnprocessedImageURLs
    bundle_url: Optional[str] = None
    annotations: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class CopyResult:
    processed: ProcessedImages
    bundle_url: Optional[str] = None
    lock: Optional[Lock] = None


async def read_lock_input(path: str) -> Lock:
    """Read a BundleLock or ImagesLock from disk.

    Raises:
        SchemaError: If the file cannot be read
        AmbiguousLockError: If it is neither kind of lock
    """
    try:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
    except OSError as e:
        raise SchemaError(f"Reading path {path}: {e}") from e
    return parse_lock(data)


async def write_lock_output(lock: Lock, path: str) -> None:
    """Write a lock file readable only by its owner."""
    async with aiofiles.open(
        path, "wb", opener=lambda p, flags: os.open(p, flags, LOCK_FILE_MODE)
    ) as f:
        await f.write(lock.as_bytes())


async def _collect_bundle(
    ref, registry: Registry, recursive: bool, concurrency: int
) -> CollectedImages:
    reference = await resolve_reference(ref, registry)
    await check_kind(reference, registry, expects_bundle=True)

    bundle = Bundle(reference)
    _, urls = await expand(bundle, registry, recursive=recursive)
    logger.info("copy | found %d images in bundle %s", len(urls) - 1, bundle.url)

    urls = await resolve_collocated(urls, bundle.url, registry, concurrency)
    return CollectedImages(urls=urls, bundle_url=bundle.url)


async def collect_image_urls(options: CopyOptions, registry: Registry) -> CollectedImages:
    """Classify the source and gather the digest-qualified urls to copy.

    Fails before anything is copied when the source is malformed or of
    the wrong kind.

    Raises:
        ReferenceParseError: If a reference is malformed
        NotFoundError: If a reference cannot be resolved
        WrongArtifactKindError: If a bundle/image flag does not match the artifact
        SchemaError: If a lock file is invalid
        LockNotFoundError: If a bundle carries no images lock
    """
    if options.lock_path:
        lock = await read_lock_input(options.lock_path)

        if isinstance(lock, BundleLock):
            reference = parse_reference(lock.bundle.image).with_tag(lock.bundle.tag)
            return await _collect_bundle(
                reference, registry, options.recursive, options.concurrency
            )

        bundles = await check_for_bundles(lock, registry)
        if bundles:
            raise WrongArtifactKindError(
                "Expected image lock to not contain bundle reference: '%s'" % "', '".join(bundles)
            )
        urls = UnprocessedImageURLs(UnprocessedImageURL(url=ref.image) for ref in lock.images)
        annotations = {ref.image: ref.annotations for ref in lock.images if ref.annotations}
        return CollectedImages(urls=urls, annotations=annotations)

    if options.image:
        reference = await resolve_reference(options.image, registry)
        await check_kind(reference, registry, expects_bundle=False)
        return CollectedImages(
            urls=UnprocessedImageURLs([UnprocessedImageURL(url=reference.url, tag=reference.tag)])
        )

    return await _collect_bundle(options.bundle, registry, options.recursive, options.concurrency)


def build_lock_output(
    processed: ProcessedImages,
    bundle_url: Optional[str],
    annotations: Optional[Dict[str, Dict[str, str]]] = None,
) -> Lock:
    """BundleLock when a bundle was copied, ImagesLock otherwise."""
    if bundle_url:
        return BundleLock.from_processed_images(processed, bundle_url)
    return ImagesLock.from_processed_images(processed, annotations)


async def copy(options: CopyOptions, registry: Registry) -> CopyResult:
    """번들, 이미지 또는 락 파일을 다른 저장소나 tar 아카이브로 복사합니다.

    Args:
        options: 복사 원본과 대상 (CopyOptions)
        registry: 레지스트리 클라이언트 (RegistryClient 또는 호환 객체)

    Returns:
        CopyResult: 복사된 이미지 목록, 번들 URL, 기록된 락

    Raises:
        ValidationError: 옵션 조합이 잘못된 경우
        WrongArtifactKindError: 번들/이미지 종류가 옵션과 맞지 않는 경우
        RelocationError: 하나 이상의 이미지 복사가 실패한 경우

    Examples:
        # 번들을 다른 저장소로 복사하고 BundleLock 기록
        async with RegistryClient() as registry:
            result = await copy(
                CopyOptions(
                    bundle="registry.io/team/app-bundle:v1",
                    to_repo="internal.io/mirror/app-bundle",
                    lock_output="bundle.lock.yml",
                ),
                registry,
            )
    """
    options.validate()
    image_set = ImageSet(options.concurrency)
    annotations: Dict[str, Dict[str, str]] = {}

    if options.from_tar:
        processed, bundle_url = await TarImageSet(image_set).import_(
            options.from_tar, options.to_repo, registry
        )
    else:
        collected = await collect_image_urls(options, registry)
        bundle_url = collected.bundle_url
        annotations = collected.annotations

        if options.to_tar:
            processed = await TarImageSet(image_set).export(
                collected.urls, options.to_tar, registry, bundle_url=bundle_url
            )
        else:
            processed = await image_set.relocate(collected.urls, options.to_repo, registry)

    lock = None
    if options.lock_output:
        lock = build_lock_output(processed, bundle_url, annotations)
        await write_lock_output(lock, options.lock_output)
        logger.info("copy | wrote lock file %s", options.lock_output)

    return CopyResult(processed=processed, bundle_url=bundle_url, lock=lock)


async def copy_with_registry(
    options: CopyOptions, config: Optional[RegistryConfig] = None
) -> CopyResult:
    """Run copy() with a RegistryClient built from config (default: environment)."""
    async with RegistryClient(config or RegistryConfig.from_env()) as registry:
        return await copy(options, registry)
