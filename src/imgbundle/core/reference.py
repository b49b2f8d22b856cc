"""Reference parsing and resolution."""

import re
from dataclasses import replace
from typing import Tuple, Union

from ..exceptions import (
    ManifestError,
    ReferenceParseError,
    RegistryError,
    WrongArtifactKindError,
)
from ..utils.digest import validate_digest
from .artifact import classify_manifest
from .types import ArtifactKind, ArtifactReference, Registry

DOCKER_HUB_REGISTRY = "index.docker.io"

HOST_PATTERN = re.compile(r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)(?:\.[a-zA-Z0-9-]+)*(?::[0-9]+)?$")
PATH_COMPONENT_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")

BUNDLE_EXPECTED_HINT = (
    "Expected bundle image but found plain image "
    "(hint: Did you use -i instead of -b? Run with -i, or use -b with a bundle reference)"
)
IMAGE_EXPECTED_HINT = (
    "Expected plain image but found bundle "
    "(hint: Did you use -b instead of -i? Use -b when copying a bundle)"
)


def _looks_like_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def _validate_repository(repository: str, original: str) -> None:
    if not repository:
        raise ReferenceParseError(f"Parsing reference '{original}': empty repository")

    components = repository.split("/")
    if len(components) > 1 and _looks_like_host(components[0]):
        if not HOST_PATTERN.match(components[0]):
            raise ReferenceParseError(
                f"Parsing reference '{original}': invalid registry host '{components[0]}'"
            )
        components = components[1:]

    for component in components:
        if not PATH_COMPONENT_PATTERN.match(component):
            raise ReferenceParseError(
                f"Parsing reference '{original}': invalid repository component '{component}'"
            )


def parse_reference(ref: str) -> ArtifactReference:
    """repository[:tag][@digest] 문자열을 구성요소로 파싱합니다.

    Args:
        ref: 참조 문자열
            - 태그: "nginx:1.25", "localhost:5000/app:v1"
            - digest: "registry.io/team/app@sha256:abc..."
            - 둘 다: "registry.io/team/app:v1@sha256:abc..."

    Returns:
        ArtifactReference: 네트워크 조회 없이 파싱된 참조

    Raises:
        ReferenceParseError: 문법적으로 잘못된 참조인 경우

    Examples:
        ref = parse_reference("localhost:5000/myapp:latest")
        # 결과: repository="localhost:5000/myapp", tag="latest", digest=None
    """
    if not isinstance(ref, str) or not ref or ref != ref.strip():
        raise ReferenceParseError(f"Parsing reference '{ref}': empty or padded reference")

    name, digest = ref, None
    if "@" in ref:
        name, digest = ref.split("@", 1)
        if not validate_digest(digest):
            raise ReferenceParseError(f"Parsing reference '{ref}': invalid digest '{digest}'")

    repository, tag = name, None
    # Split only on a ':' after the last '/' so registry ports survive
    if ":" in name.rsplit("/", 1)[-1]:
        repository, tag = name.rsplit(":", 1)
        if not TAG_PATTERN.match(tag):
            raise ReferenceParseError(f"Parsing reference '{ref}': invalid tag '{tag}'")

    _validate_repository(repository, ref)
    return ArtifactReference(repository=repository, digest=digest, tag=tag)


def parse_digest_reference(ref: str) -> ArtifactReference:
    """Parse a reference that must be of the form repository@digest."""
    try:
        parsed = parse_reference(ref)
    except ReferenceParseError as e:
        raise ReferenceParseError(f"Expected ref to be in digest form, got '{ref}': {e}") from e
    if parsed.digest is None:
        raise ReferenceParseError(f"Expected ref to be in digest form, got '{ref}'")
    return parsed


def image_with_repository(url: str, repository: str) -> str:
    """Move a digest-qualified url into another repository, keeping its digest."""
    parts = url.split("@")
    if len(parts) != 2:
        raise ReferenceParseError(f"Parsing image URL: {url}")
    return f"{repository}@{parts[1]}"


def split_repository(repository: str, default_registry: str = DOCKER_HUB_REGISTRY) -> Tuple[str, str]:
    """Split a repository into (registry host, repository path).

    Docker Hub single-component names get the "library/" prefix.
    """
    components = repository.split("/", 1)
    if len(components) == 2 and _looks_like_host(components[0]):
        return components[0], components[1]

    path = repository
    if default_registry == DOCKER_HUB_REGISTRY and "/" not in path:
        path = f"library/{path}"
    return default_registry, path


async def resolve_reference(
    ref: Union[str, ArtifactReference], registry: Registry
) -> ArtifactReference:
    """Resolve a reference to a digest-qualified, classified reference.

    Tag-only references are resolved through the registry. The artifact kind
    is read from the manifest once here and carried on the result.

    Raises:
        ReferenceParseError: If the reference is malformed
        NotFoundError: If the registry does not know the reference
        ManifestError: If the manifest cannot be read
    """
    reference = parse_reference(ref) if isinstance(ref, str) else ref

    if reference.digest is None:
        digest = await registry.resolve_digest(reference)
        reference = reference.with_digest(digest)

    manifest, media_type = await registry.fetch_manifest(
        ArtifactReference(reference.repository, reference.digest)
    )
    return replace(reference, kind=classify_manifest(manifest, media_type))


async def is_bundle(reference: ArtifactReference, registry: Registry) -> bool:
    """Check whether a reference points at a bundle.

    Raises:
        ManifestError: If the manifest cannot be read
    """
    if reference.kind is not None:
        return reference.kind == ArtifactKind.BUNDLE

    try:
        manifest, media_type = await registry.fetch_manifest(reference)
    except RegistryError as e:
        raise ManifestError(f"Checking if image is bundle: {e}") from e
    return classify_manifest(manifest, media_type) == ArtifactKind.BUNDLE


async def check_kind(
    reference: ArtifactReference, registry: Registry, expects_bundle: bool
) -> None:
    """Raise WrongArtifactKindError unless the reference is of the expected kind."""
    bundle = await is_bundle(reference, registry)
    if bundle == expects_bundle:
        return
    hint = BUNDLE_EXPECTED_HINT if expects_bundle else IMAGE_EXPECTED_HINT
    raise WrongArtifactKindError(f"{hint}: '{reference}'")
