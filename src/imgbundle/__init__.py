"""imgbundle - Async resolution and relocation of OCI bundles and images."""

__version__ = "0.1.0"

from .bundle import Bundle, check_for_bundles, expand
from .collocation import check_images_exist, resolve_collocated
from .copy import CopyOptions, CopyResult, collect_image_urls, copy, copy_with_registry
from .core.artifact import BUNDLE_ANNOTATION, ImageArtifact
from .core.reference import (
    check_kind,
    is_bundle,
    parse_digest_reference,
    parse_reference,
    resolve_reference,
)
from .core.registry_client import RegistryClient
from .core.types import (
    ArtifactKind,
    ArtifactReference,
    ProcessedImage,
    ProcessedImages,
    RegistryConfig,
    UnprocessedImageURL,
    UnprocessedImageURLs,
)
from .exceptions import (
    AmbiguousLockError,
    BlobUploadError,
    IntegrityError,
    LockNotFoundError,
    ManifestError,
    NotFoundError,
    ReferenceParseError,
    RegistryConnectionError,
    RegistryError,
    RegistryUnavailableError,
    RelocationError,
    SchemaError,
    TarReadError,
    ValidationError,
    WrongArtifactKindError,
)
from .imageset import ImageSet, TarImageSet
from .lockconfig import BundleLock, ImagesLock, parse_lock, read_lock_file
from .pull import pull_bundle, pull_image

__all__ = [
    # Copy
    "CopyOptions",
    "CopyResult",
    "collect_image_urls",
    "copy",
    "copy_with_registry",
    # Pull
    "pull_bundle",
    "pull_image",
    # Resolution and expansion
    "Bundle",
    "check_for_bundles",
    "check_images_exist",
    "check_kind",
    "expand",
    "is_bundle",
    "parse_digest_reference",
    "parse_reference",
    "resolve_collocated",
    "resolve_reference",
    # Relocation
    "ImageSet",
    "TarImageSet",
    "RegistryClient",
    # Types
    "ArtifactKind",
    "ArtifactReference",
    "BUNDLE_ANNOTATION",
    "ImageArtifact",
    "ProcessedImage",
    "ProcessedImages",
    "RegistryConfig",
    "UnprocessedImageURL",
    "UnprocessedImageURLs",
    # Locks
    "BundleLock",
    "ImagesLock",
    "parse_lock",
    "read_lock_file",
    # Exceptions
    "AmbiguousLockError",
    "BlobUploadError",
    "IntegrityError",
    "LockNotFoundError",
    "ManifestError",
    "NotFoundError",
    "ReferenceParseError",
    "RegistryConnectionError",
    "RegistryError",
    "RegistryUnavailableError",
    "RelocationError",
    "SchemaError",
    "TarReadError",
    "ValidationError",
    "WrongArtifactKindError",
]
