"""BundleLock and ImagesLock documents."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .core.reference import parse_digest_reference
from .core.types import ProcessedImages
from .exceptions import AmbiguousLockError, ReferenceParseError, SchemaError

LOCK_API_VERSION = "imgpkg.example/v1alpha1"
IMAGES_LOCK_KIND = "ImagesLock"
BUNDLE_LOCK_KIND = "BundleLock"

# Location of the images lock inside a bundle
IMAGES_LOCK_PATH = ".imgpkg/images.yml"

LOCK_FILE_MODE = 0o600


def _load_yaml(data: Union[bytes, str], what: str) -> Dict[str, Any]:
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise SchemaError(f"Unmarshaling {what}: {e}") from e
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise SchemaError(f"Unmarshaling {what}: expected a mapping")
    return document


def _validate_version(api_version: str, kind: str, expected_kind: str) -> None:
    if api_version != LOCK_API_VERSION:
        raise SchemaError(
            f"Validating apiVersion: Unknown version (known: {LOCK_API_VERSION})"
        )
    if kind != expected_kind:
        raise SchemaError(f"Validating kind: Unknown kind (known: {expected_kind})")


def _validate_digest_ref(image: Any) -> None:
    try:
        if not isinstance(image, str):
            raise ReferenceParseError(f"not a string: {image!r}")
        parse_digest_reference(image)
    except ReferenceParseError as e:
        raise SchemaError(f"Expected ref to be in digest form, got '{image}'") from e


def _write_bytes(path: Union[str, Path], data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, LOCK_FILE_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(data)


def _read_bytes(path: Union[str, Path]) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise SchemaError(f"Reading path {path}: {e}") from e


def _dump(document: Dict[str, Any]) -> bytes:
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False).encode("utf-8")


@dataclass
class ImageRef:
    image: str
    annotations: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"image": self.image}
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        return data


@dataclass
class ImagesLock:
    """A list of digest-qualified image references.

    Written as the result of relocating a plain image set, and embedded in
    every bundle at IMAGES_LOCK_PATH.
    """

    images: List[ImageRef] = field(default_factory=list)
    api_version: str = LOCK_API_VERSION
    kind: str = IMAGES_LOCK_KIND
    # Set when a parsed document listed "images: []" explicitly
    keep_empty_images: bool = field(default=False, compare=False, repr=False)

    @classmethod
    def from_bytes(cls, data: Union[bytes, str]) -> "ImagesLock":
        document = _load_yaml(data, "images lock")
        images = document.get("images")
        if images is None:
            images = []
        if not isinstance(images, list):
            raise SchemaError("Unmarshaling images lock: images must be a list")

        refs = []
        for entry in images:
            if not isinstance(entry, dict):
                raise SchemaError("Unmarshaling images lock: image entries must be mappings")
            annotations = entry.get("annotations") or {}
            if not isinstance(annotations, dict):
                raise SchemaError("Unmarshaling images lock: annotations must be a mapping")
            for key, value in annotations.items():
                if not isinstance(key, str) or not isinstance(value, str):
                    raise SchemaError(
                        f"Unmarshaling images lock: annotation '{key}' must map a string to a string"
                    )
            refs.append(ImageRef(image=entry.get("image", ""), annotations=dict(annotations)))

        lock = cls(
            images=refs,
            api_version=document.get("apiVersion", ""),
            kind=document.get("kind", ""),
            keep_empty_images=document.get("images") == [],
        )
        try:
            lock.validate()
        except SchemaError as e:
            raise SchemaError(f"Validating images lock: {e}") from e
        return lock

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImagesLock":
        return cls.from_bytes(_read_bytes(path))

    @classmethod
    def from_processed_images(
        cls,
        processed: ProcessedImages,
        annotations: Optional[Dict[str, Dict[str, str]]] = None,
    ) -> "ImagesLock":
        """Lock every copied image at its destination, carrying source annotations."""
        annotations = annotations or {}
        return cls(
            images=[
                ImageRef(
                    image=image.url,
                    annotations=dict(annotations.get(image.source.url, {})),
                )
                for image in processed.all()
            ]
        )

    def validate(self) -> None:
        _validate_version(self.api_version, self.kind, IMAGES_LOCK_KIND)
        for ref in self.images:
            _validate_digest_ref(ref.image)

    def as_dict(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {"apiVersion": self.api_version, "kind": self.kind}
        if self.images or self.keep_empty_images:
            document["images"] = [ref.as_dict() for ref in self.images]
        return document

    def as_bytes(self) -> bytes:
        return _dump(self.as_dict())

    def write_to_path(self, path: Union[str, Path]) -> None:
        _write_bytes(path, self.as_bytes())


@dataclass
class BundleRef:
    image: str
    tag: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"image": self.image}
        if self.tag:
            data["tag"] = self.tag
        return data


@dataclass
class BundleLock:
    """A single digest-qualified bundle reference plus its original tag."""

    bundle: BundleRef
    api_version: str = LOCK_API_VERSION
    kind: str = BUNDLE_LOCK_KIND

    @classmethod
    def from_bytes(cls, data: Union[bytes, str]) -> "BundleLock":
        document = _load_yaml(data, "bundle lock")
        bundle = document.get("bundle") or {}
        if not isinstance(bundle, dict):
            raise SchemaError("Unmarshaling bundle lock: bundle must be a mapping")

        tag = bundle.get("tag")
        if tag is not None and not isinstance(tag, str):
            raise SchemaError(f"Unmarshaling bundle lock: tag must be a string, got {tag!r}")
        lock = cls(
            bundle=BundleRef(image=bundle.get("image", ""), tag=tag or None),
            api_version=document.get("apiVersion", ""),
            kind=document.get("kind", ""),
        )
        try:
            lock.validate()
        except SchemaError as e:
            raise SchemaError(f"Validating bundle lock: {e}") from e
        return lock

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "BundleLock":
        return cls.from_bytes(_read_bytes(path))

    @classmethod
    def from_processed_images(cls, processed: ProcessedImages, bundle_url: str) -> "BundleLock":
        """Lock the destination of the bundle's own copy.

        Raises:
            SchemaError: If the bundle url was not among the processed images
        """
        image = processed.for_url(bundle_url)
        if image is None:
            raise SchemaError(f"Could not find processed item for url '{bundle_url}'")
        return cls(bundle=BundleRef(image=image.url, tag=image.source.tag))

    def validate(self) -> None:
        _validate_version(self.api_version, self.kind, BUNDLE_LOCK_KIND)
        _validate_digest_ref(self.bundle.image)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "bundle": self.bundle.as_dict(),
        }

    def as_bytes(self) -> bytes:
        return _dump(self.as_dict())

    def write_to_path(self, path: Union[str, Path]) -> None:
        _write_bytes(path, self.as_bytes())


def parse_lock(data: Union[bytes, str]) -> Union[BundleLock, ImagesLock]:
    """Parse a lock of unknown kind, trying BundleLock first.

    Raises:
        AmbiguousLockError: If neither kind parses; carries both errors
    """
    try:
        return BundleLock.from_bytes(data)
    except SchemaError as bundle_error:
        try:
            return ImagesLock.from_bytes(data)
        except SchemaError as images_error:
            raise AmbiguousLockError(bundle_error, images_error) from images_error


def read_lock_file(path: Union[str, Path]) -> Union[BundleLock, ImagesLock]:
    return parse_lock(_read_bytes(path))
