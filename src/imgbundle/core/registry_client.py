"""Docker Registry API v2 async client implementation."""

import asyncio
from typing import Optional, Tuple
from urllib.parse import urljoin

import aiohttp

from ..exceptions import (
    BlobUploadError,
    ManifestError,
    NotFoundError,
    RegistryConnectionError,
    RegistryError,
    RegistryUnavailableError,
)
from ..utils.digest import calculate_digest, ensure_digest, validate_digest
from .artifact import (
    MANIFEST_ACCEPT,
    ImageArtifact,
    child_manifest_digests,
    is_index,
    manifest_blob_digests,
    parse_manifest,
)
from .reference import split_repository
from .types import ArtifactReference, RegistryConfig

CHUNK_SIZE = 5 * 1024 * 1024  # 5MB


class RegistryClient:
    """Docker Registry API v2 async client for unauthenticated registries.

    A single client talks to every registry host named by the references it
    is given; it is safe to share between concurrent copy workers.
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        connector: Optional[aiohttp.TCPConnector] = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            config: Registry configuration
            connector: aiohttp connector for connection pooling
        """
        self.config = config or RegistryConfig()
        self.connector = connector
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        if not self.session:
            self.session = aiohttp.ClientSession(
                connector=self.connector,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    def _repository_url(self, repository: str) -> Tuple[str, str]:
        """Return (registry base url, API url prefix) for a repository."""
        host, path = split_repository(repository, self.config.default_registry)
        base_url = f"{self.config.scheme_for(host)}://{host}"
        return base_url, f"{base_url}/v2/{path}"

    def _manifest_url(self, ref: ArtifactReference) -> str:
        _, prefix = self._repository_url(ref.repository)
        return f"{prefix}/manifests/{ref.digest or ref.tag or 'latest'}"

    def _blob_url(self, repository: str, digest: str) -> str:
        _, prefix = self._repository_url(repository)
        return f"{prefix}/blobs/{digest}"

    async def resolve_digest(self, ref: ArtifactReference) -> str:
        """Resolve a tag reference to its manifest digest.

        Raises:
            NotFoundError: If the registry does not know the reference
            RegistryConnectionError: If the registry cannot be reached
        """
        if ref.digest:
            return ref.digest

        url = self._manifest_url(ref)
        try:
            async with self.session.head(url, headers={"Accept": MANIFEST_ACCEPT}) as resp:
                if resp.status == 404:
                    raise NotFoundError(f"Resolving '{ref}': not found")
                resp.raise_for_status()
                digest = resp.headers.get("Docker-Content-Digest", "")
        except aiohttp.ClientError as e:
            raise RegistryConnectionError(f"Resolving '{ref}': {e}") from e

        if validate_digest(digest):
            return digest

        # Registry did not report a digest; hash the manifest ourselves
        manifest, _ = await self.fetch_manifest(ref)
        return calculate_digest(manifest)

    async def fetch_manifest(self, ref: ArtifactReference) -> Tuple[bytes, str]:
        """Retrieve raw manifest bytes and their media type.

        Raises:
            NotFoundError: If the manifest does not exist
            IntegrityError: If the bytes do not match a requested digest
            ManifestError: If retrieval fails
        """
        url = self._manifest_url(ref)
        try:
            async with self.session.get(url, headers={"Accept": MANIFEST_ACCEPT}) as resp:
                if resp.status == 404:
                    raise NotFoundError(f"Manifest '{ref}' not found")
                resp.raise_for_status()
                manifest = await resp.read()
                media_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
        except aiohttp.ClientError as e:
            raise ManifestError(f"Failed to get manifest '{ref}': {e}") from e

        if ref.digest:
            ensure_digest(manifest, ref.digest, f"manifest {ref.repository}@{ref.digest}")
        if not media_type or media_type == "application/octet-stream":
            media_type = parse_manifest(manifest).get("mediaType", "")
        return manifest, media_type

    async def fetch_blob(self, repository: str, digest: str) -> bytes:
        """Download a blob and verify it against its digest.

        Raises:
            NotFoundError: If the blob does not exist
            IntegrityError: If the content does not match the digest
            RegistryError: If the download fails
        """
        try:
            async with self.session.get(self._blob_url(repository, digest)) as resp:
                if resp.status == 404:
                    raise NotFoundError(f"Blob {repository}@{digest} not found")
                resp.raise_for_status()
                data = await resp.read()
        except aiohttp.ClientError as e:
            raise RegistryError(f"Failed to get blob {repository}@{digest}: {e}") from e

        ensure_digest(data, digest, f"blob {repository}@{digest}")
        return data

    async def fetch_image(self, ref: ArtifactReference) -> ImageArtifact:
        """Fetch an image or index with all of its blobs.

        Raises:
            NotFoundError: If the artifact does not exist
            IntegrityError: If any fetched content does not match its digest
        """
        manifest, media_type = await self.fetch_manifest(ref)
        data = parse_manifest(manifest)

        if is_index(data, media_type):
            children = await asyncio.gather(
                *[
                    self.fetch_image(ArtifactReference(ref.repository, digest))
                    for digest in child_manifest_digests(data)
                ]
            )
            return ImageArtifact(manifest=manifest, media_type=media_type, children=list(children))

        semaphore = asyncio.Semaphore(self.config.concurrent_blob_transfers)

        async def download(digest: str) -> Tuple[str, bytes]:
            async with semaphore:
                return digest, await self.fetch_blob(ref.repository, digest)

        blobs = await asyncio.gather(*[download(d) for d in manifest_blob_digests(data)])
        return ImageArtifact(manifest=manifest, media_type=media_type, blobs=dict(blobs))

    async def write_image(
        self, ref: ArtifactReference, image: ImageArtifact, tag: Optional[str] = None
    ) -> str:
        """Write an image or index to ref's repository under its digest.

        Children and blobs are written before the manifest that references
        them. The tag, if any, is applied as an additional pointer.

        Returns:
            Manifest digest reported by the registry

        Raises:
            BlobUploadError: If a blob upload fails
            ManifestError: If a manifest upload fails
        """
        for child in image.children:
            await self.write_image(ref.with_digest(child.digest).with_tag(None), child)

        semaphore = asyncio.Semaphore(self.config.concurrent_blob_transfers)

        async def upload(digest: str, data: bytes) -> None:
            async with semaphore:
                if not await self.check_blob_exists(ref.repository, digest):
                    await self.upload_blob(ref.repository, data, digest)

        await asyncio.gather(*[upload(d, data) for d, data in image.blobs.items()])

        digest = await self.upload_manifest(ref.repository, image.digest, image.manifest, image.media_type)
        if tag:
            await self.upload_manifest(ref.repository, tag, image.manifest, image.media_type)
        return digest

    async def tag_image(self, ref: ArtifactReference, tag: str) -> str:
        """Point tag at a manifest already stored under ref's digest.

        Only the manifest is re-sent; no blob is transferred.

        Raises:
            NotFoundError: If ref's digest is not in the repository
            ManifestError: If the manifest cannot be read or uploaded
        """
        manifest, media_type = await self.fetch_manifest(ref.with_tag(None))
        return await self.upload_manifest(ref.repository, tag, manifest, media_type)

    async def exists(self, ref: ArtifactReference) -> bool:
        """Check whether a digest reference exists.

        Returns:
            False when the registry answers "not found"

        Raises:
            RegistryUnavailableError: If the check itself cannot be performed
        """
        try:
            async with self.session.head(
                self._manifest_url(ref), headers={"Accept": MANIFEST_ACCEPT}
            ) as resp:
                if resp.status == 200:
                    return True
                if resp.status == 404:
                    return False
                raise RegistryUnavailableError(
                    f"Checking existence of '{ref}': unexpected status {resp.status}"
                )
        except aiohttp.ClientError as e:
            raise RegistryUnavailableError(f"Checking existence of '{ref}': {e}") from e

    async def check_blob_exists(self, repository: str, digest: str) -> bool:
        """Check if a blob exists in the registry.

        Args:
            repository: Repository name
            digest: Blob digest

        Returns:
            True if blob exists
        """
        try:
            async with self.session.head(self._blob_url(repository, digest)) as resp:
                return resp.status == 200
        except aiohttp.ClientError:
            return False

    async def upload_blob(self, repository: str, data: bytes, digest: str) -> str:
        """Upload a blob to the registry.

        Args:
            repository: Repository name
            data: Blob data
            digest: Expected blob digest

        Returns:
            Blob digest

        Raises:
            BlobUploadError: If upload fails
        """
        # Validate digest format
        if not validate_digest(digest):
            raise ValueError(f"Invalid digest format: {digest}")

        base_url, prefix = self._repository_url(repository)
        try:
            # Start upload session
            async with self.session.post(f"{prefix}/blobs/uploads/") as resp:
                resp.raise_for_status()
                upload_url = resp.headers.get("Location", "")
                if not upload_url.startswith("http"):
                    upload_url = urljoin(base_url, upload_url)

            # Upload data in chunks
            for i in range(0, len(data), CHUNK_SIZE):
                chunk = data[i : i + CHUNK_SIZE]
                async with self.session.patch(
                    upload_url,
                    data=chunk,
                    headers={
                        "Content-Type": "application/octet-stream",
                        "Content-Length": str(len(chunk)),
                    },
                ) as resp:
                    resp.raise_for_status()
                    upload_url = resp.headers.get("Location", "")
                    if not upload_url.startswith("http"):
                        upload_url = urljoin(base_url, upload_url)

            # Finalize upload
            final_url = (
                f"{upload_url}&digest={digest}"
                if "?" in upload_url
                else f"{upload_url}?digest={digest}"
            )
            async with self.session.put(
                final_url, headers={"Content-Length": "0"}
            ) as resp:
                resp.raise_for_status()

            return digest

        except aiohttp.ClientError as e:
            raise BlobUploadError(f"Failed to upload blob {digest}: {e}") from e

    async def upload_manifest(
        self,
        repository: str,
        reference: str,
        manifest: bytes,
        media_type: str,
    ) -> str:
        """Upload raw manifest bytes to the registry.

        Args:
            repository: Repository name
            reference: Tag or digest reference
            manifest: Manifest bytes, sent unchanged
            media_type: Manifest media type

        Returns:
            Manifest digest

        Raises:
            ManifestError: If upload fails
        """
        try:
            _, prefix = self._repository_url(repository)
            async with self.session.put(
                f"{prefix}/manifests/{reference}",
                data=manifest,
                headers={
                    "Content-Type": media_type,
                    "Content-Length": str(len(manifest)),
                },
            ) as resp:
                resp.raise_for_status()
                return resp.headers.get("Docker-Content-Digest") or calculate_digest(manifest)

        except aiohttp.ClientError as e:
            raise ManifestError(f"Failed to upload manifest: {e}") from e
