"""Core types shared by resolution, expansion and relocation."""

import enum
import os
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Protocol, Tuple

if TYPE_CHECKING:
    from .artifact import ImageArtifact


@dataclass(frozen=True)
class RegistryConfig:
    """Registry client configuration.

    Attributes:
        timeout: Request timeout in seconds
        insecure_registries: Hosts (with port) reached over plain HTTP
        concurrent_blob_transfers: Blob transfers in flight per image
        default_registry: Host used for references without one
    """

    timeout: int = 30
    insecure_registries: Tuple[str, ...] = ()
    concurrent_blob_transfers: int = 3
    default_registry: str = "index.docker.io"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "RegistryConfig":
        """Build a config from IMGBUNDLE_* environment variables."""
        env = os.environ if environ is None else environ
        insecure = tuple(
            host.strip()
            for host in env.get("IMGBUNDLE_INSECURE_REGISTRIES", "").split(",")
            if host.strip()
        )
        return cls(
            timeout=int(env.get("IMGBUNDLE_TIMEOUT", cls.timeout)),
            insecure_registries=insecure,
            concurrent_blob_transfers=int(
                env.get("IMGBUNDLE_BLOB_CONCURRENCY", cls.concurrent_blob_transfers)
            ),
        )

    def scheme_for(self, host: str) -> str:
        return "http" if host in self.insecure_registries else "https"


class ArtifactKind(enum.Enum):
    """What a digest points at, decided once when a reference is resolved."""

    IMAGE = "image"
    INDEX = "index"
    BUNDLE = "bundle"


@dataclass(frozen=True)
class ArtifactReference:
    """A repository plus optional digest and tag.

    Two references name the same artifact iff their digests are equal.
    """

    repository: str
    digest: Optional[str] = None
    tag: Optional[str] = None
    kind: Optional[ArtifactKind] = field(default=None, compare=False)

    @property
    def url(self) -> str:
        """Digest-qualified form, repository@digest."""
        if not self.digest:
            raise ValueError(f"Reference '{self}' is not digest qualified")
        return f"{self.repository}@{self.digest}"

    def same_artifact(self, other: "ArtifactReference") -> bool:
        return self.digest is not None and self.digest == other.digest

    def with_tag(self, tag: Optional[str]) -> "ArtifactReference":
        return replace(self, tag=tag)

    def with_digest(self, digest: str) -> "ArtifactReference":
        return replace(self, digest=digest)

    def __str__(self) -> str:
        ref = self.repository
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref


@dataclass(frozen=True)
class UnprocessedImageURL:
    """A copy request not yet executed. `url` is digest qualified."""

    url: str
    tag: Optional[str] = None


class UnprocessedImageURLs:
    """Insertion-ordered copy requests, unique by url.

    Adding a url twice keeps the first position and the most specific tag.
    """

    def __init__(self, urls=()) -> None:
        self._urls: Dict[str, UnprocessedImageURL] = {}
        for url in urls:
            self.add(url)

    def add(self, image: UnprocessedImageURL) -> None:
        existing = self._urls.get(image.url)
        if existing is None or (image.tag and not existing.tag):
            self._urls[image.url] = image

    def all(self) -> List[UnprocessedImageURL]:
        return list(self._urls.values())

    def __contains__(self, url: str) -> bool:
        return url in self._urls

    def __iter__(self) -> Iterator[UnprocessedImageURL]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._urls)

    def __repr__(self) -> str:
        return f"UnprocessedImageURLs({self.all()!r})"


@dataclass(frozen=True)
class ProcessedImage:
    """One completed copy."""

    source: UnprocessedImageURL
    destination: ArtifactReference

    @property
    def url(self) -> str:
        return self.destination.url


class ProcessedImages:
    """Insertion-ordered completed copies, queryable by source url."""

    def __init__(self, images=()) -> None:
        self._images: Dict[str, ProcessedImage] = {}
        for image in images:
            self.add(image)

    def add(self, image: ProcessedImage) -> None:
        self._images[image.source.url] = image

    def all(self) -> List[ProcessedImage]:
        return list(self._images.values())

    def for_url(self, url: str) -> Optional[ProcessedImage]:
        return self._images.get(url)

    def __iter__(self) -> Iterator[ProcessedImage]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._images)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProcessedImages):
            return NotImplemented
        return self.all() == other.all()

    def __repr__(self) -> str:
        return f"ProcessedImages({self.all()!r})"


class Registry(Protocol):
    """Digest-addressed artifact store: a registry, an archive, or a test double."""

    async def resolve_digest(self, ref: ArtifactReference) -> str:
        ...

    async def fetch_manifest(self, ref: ArtifactReference) -> Tuple[bytes, str]:
        ...

    async def fetch_image(self, ref: ArtifactReference) -> "ImageArtifact":
        ...

    async def write_image(
        self, ref: ArtifactReference, image: "ImageArtifact", tag: Optional[str] = None
    ) -> str:
        ...

    async def tag_image(self, ref: ArtifactReference, tag: str) -> str:
        ...

    async def exists(self, ref: ArtifactReference) -> bool:
        ...
