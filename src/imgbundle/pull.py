"""Extract bundles and plain images into local directories."""

import asyncio
import io
import logging
import os
import tarfile
from pathlib import Path
from typing import Union

import aiofiles

from .collocation import candidate_urls, check_images_exist
from .core.artifact import ImageArtifact, is_index
from .core.reference import check_kind, resolve_reference
from .core.types import ArtifactReference, Registry
from .exceptions import SchemaError, TarReadError, ValidationError
from .lockconfig import IMAGES_LOCK_PATH, LOCK_FILE_MODE, ImageRef, ImagesLock

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."


def _safe_member_path(root: Path, name: str) -> Path:
    if name.startswith("./"):
        name = name[2:]
    target = (root / name).resolve()
    if target != root and root not in target.parents:
        raise TarReadError(f"Refusing to extract '{name}' outside {root}")
    return target


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        for child in sorted(path.rglob("*"), reverse=True):
            if child.is_dir() and not child.is_symlink():
                child.rmdir()
            else:
                child.unlink()
        path.rmdir()
    elif path.exists() or path.is_symlink():
        path.unlink()


def _extract_layer(layer: bytes, root: Path) -> None:
    with tarfile.open(fileobj=io.BytesIO(layer), mode="r:*") as tar:
        for member in tar.getmembers():
            target = _safe_member_path(root, member.name)
            if target.name.startswith(WHITEOUT_PREFIX):
                _remove(target.with_name(target.name[len(WHITEOUT_PREFIX):]))
                continue
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                file_obj = tar.extractfile(member)
                with open(target, "wb") as f:
                    f.write(file_obj.read())
                file_obj.close()
                os.chmod(target, member.mode & 0o777)
            else:
                logger.debug("pull | skipping %s (not a file or directory)", member.name)


def extract_layers(image: ImageArtifact, output_dir: Union[str, Path]) -> None:
    """Unpack an image's layers, in manifest order, into output_dir.

    Upper layers overwrite lower ones and OCI whiteout entries delete
    what they shadow. output_dir must be missing or empty.

    Raises:
        ValidationError: If output_dir holds files already
        TarReadError: If a layer is not a tar or escapes output_dir
    """
    root = Path(output_dir)
    if root.exists() and any(root.iterdir()):
        raise ValidationError(f"Output directory '{root}' is not empty")
    root.mkdir(parents=True, exist_ok=True)
    root = root.resolve()

    for layer in image.layers():
        try:
            _extract_layer(layer, root)
        except tarfile.TarError as e:
            raise TarReadError(f"Extracting layer into {root}: {e}") from e


async def rewrite_images_lock(
    output_dir: Union[str, Path], bundle_repository: str, registry: Registry
) -> bool:
    """Point a pulled bundle's images lock at the bundle repository.

    The lock is rewritten only when every image has a copy collocated with
    the bundle; otherwise it is left as pulled.

    Returns:
        True if the lock file was rewritten

    Raises:
        NotFoundError: If an image exists neither collocated nor at its original url
        SchemaError: If the pulled lock is missing or invalid
    """
    path = Path(output_dir) / IMAGES_LOCK_PATH
    try:
        async with aiofiles.open(path, "rb") as f:
            lock = ImagesLock.from_bytes(await f.read())
    except OSError as e:
        raise SchemaError(f"Reading path {path}: {e}") from e

    already_collocated = 0
    refs = []
    for ref in lock.images:
        candidates = candidate_urls(ref.image, bundle_repository)
        if len(candidates) == 1:
            already_collocated += 1

        found = await check_images_exist(candidates, registry)
        if found != candidates[0]:
            logger.info("pull | one or more images not found in bundle repo; skipping lock file update")
            return False
        refs.append(ImageRef(image=found, annotations=dict(ref.annotations)))

    if already_collocated == len(lock.images):
        return False

    lock.images = refs
    async with aiofiles.open(
        path, "wb", opener=lambda p, flags: os.open(p, flags, LOCK_FILE_MODE)
    ) as f:
        await f.write(lock.as_bytes())
    logger.info("pull | all images found in bundle repo; updated lock file %s", path)
    return True


async def pull_bundle(
    ref: Union[str, ArtifactReference], output_dir: Union[str, Path], registry: Registry
) -> str:
    """번들을 로컬 디렉터리로 풀고 이미지 락을 번들 저장소 기준으로 갱신합니다.

    Args:
        ref: 번들 참조 (태그 또는 다이제스트)
        output_dir: 압축을 풀 디렉터리 (없거나 비어 있어야 함)
        registry: 레지스트리 클라이언트 (RegistryClient 또는 호환 객체)

    Returns:
        str: 풀어낸 번들의 다이제스트 URL

    Raises:
        WrongArtifactKindError: 참조가 일반 이미지인 경우
        ValidationError: 출력 디렉터리가 비어 있지 않은 경우
        NotFoundError: 락의 이미지를 어디에서도 찾을 수 없는 경우

    Examples:
        async with RegistryClient() as registry:
            url = await pull_bundle("registry.io/team/app-bundle:v1", "./app-bundle", registry)
    """
    reference = await resolve_reference(ref, registry)
    await check_kind(reference, registry, expects_bundle=True)

    image = await registry.fetch_image(ArtifactReference(reference.repository, reference.digest))
    if image.children:
        raise ValidationError(
            "Expected to find exactly one image, but found zero or more than one"
        )

    logger.info("pull | pulling bundle %s", reference.url)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, extract_layers, image, output_dir)

    await rewrite_images_lock(output_dir, reference.repository, registry)
    return reference.url


async def pull_image(
    ref: Union[str, ArtifactReference], output_dir: Union[str, Path], registry: Registry
) -> str:
    """Extract a plain image into output_dir.

    For an index the first image is extracted.

    Raises:
        WrongArtifactKindError: If the reference is a bundle
        ValidationError: If an index lists no images or output_dir is not empty
    """
    reference = await resolve_reference(ref, registry)
    await check_kind(reference, registry, expects_bundle=False)

    image = await registry.fetch_image(ArtifactReference(reference.repository, reference.digest))
    if image.children:
        if len(image.children) > 1:
            logger.info("pull | found multiple images in %s, extracting first", reference.url)
        image = image.children[0]
    elif is_index(image.manifest_json(), image.media_type):
        raise ValidationError("Expected to find at least one image, but found none")

    logger.info("pull | pulling image %s", reference.url)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, extract_layers, image, output_dir)
    return reference.url
