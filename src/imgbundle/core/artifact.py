"""Image handles and manifest inspection helpers."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..exceptions import ManifestError
from ..utils.digest import calculate_digest
from .types import ArtifactKind

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

INDEX_MEDIA_TYPES = (OCI_INDEX, DOCKER_MANIFEST_LIST)
MANIFEST_MEDIA_TYPES = (OCI_MANIFEST, DOCKER_MANIFEST) + INDEX_MEDIA_TYPES

# Accept header sent on every manifest request
MANIFEST_ACCEPT = ", ".join(MANIFEST_MEDIA_TYPES)

# Manifest annotation marking an image as a bundle
BUNDLE_ANNOTATION = "imgpkg.example/bundle"


def parse_manifest(manifest: bytes) -> Dict[str, Any]:
    """Decode raw manifest bytes into a dictionary.

    Raises:
        ManifestError: If the bytes are not a JSON object
    """
    try:
        data = json.loads(manifest)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestError(f"Invalid manifest JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a JSON object")
    return data


def is_index(manifest: Dict[str, Any], media_type: Optional[str] = None) -> bool:
    if media_type in INDEX_MEDIA_TYPES:
        return True
    return manifest.get("mediaType") in INDEX_MEDIA_TYPES or "manifests" in manifest


def classify_manifest(manifest: bytes, media_type: Optional[str] = None) -> ArtifactKind:
    """Classify an artifact from its manifest.

    Indexes are never bundles; an image manifest carrying the bundle
    annotation is a bundle.
    """
    data = parse_manifest(manifest)
    if is_index(data, media_type):
        return ArtifactKind.INDEX
    annotations = data.get("annotations") or {}
    if BUNDLE_ANNOTATION in annotations:
        return ArtifactKind.BUNDLE
    return ArtifactKind.IMAGE


def manifest_blob_digests(manifest: Dict[str, Any]) -> List[str]:
    """Config and layer digests referenced by an image manifest, config first."""
    digests = []
    config = manifest.get("config")
    if config:
        digests.append(config["digest"])
    for layer in manifest.get("layers") or []:
        if layer["digest"] not in digests:
            digests.append(layer["digest"])
    return digests


def manifest_layer_digests(manifest: Dict[str, Any]) -> List[str]:
    return [layer["digest"] for layer in manifest.get("layers") or []]


def child_manifest_digests(manifest: Dict[str, Any]) -> List[str]:
    """Digests of the manifests referenced by an index."""
    return [child["digest"] for child in manifest.get("manifests") or []]


@dataclass
class ImageArtifact:
    """An image or index as moved between registries and archives.

    Attributes:
        manifest: Raw manifest bytes; their digest is the artifact digest
        media_type: Manifest media type
        blobs: Config and layer content keyed by digest (images only)
        children: Referenced manifests (indexes only)
    """

    manifest: bytes
    media_type: str
    blobs: Dict[str, bytes] = field(default_factory=dict)
    children: List["ImageArtifact"] = field(default_factory=list)

    @property
    def digest(self) -> str:
        return calculate_digest(self.manifest)

    def manifest_json(self) -> Dict[str, Any]:
        return parse_manifest(self.manifest)

    def layers(self) -> List[bytes]:
        """Layer content in manifest order."""
        return [self.blobs[digest] for digest in manifest_layer_digests(self.manifest_json())]

    def walk(self):
        """Yield this artifact and every nested child, children first."""
        for child in self.children:
            yield from child.walk()
        yield self
