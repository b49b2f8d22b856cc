"""Test helpers: artifact builders and registry test doubles."""

import asyncio
import gzip
import io
import json
import tarfile
import uuid

from aiohttp import web

from imgbundle.core.artifact import BUNDLE_ANNOTATION, OCI_INDEX, OCI_MANIFEST, ImageArtifact
from imgbundle.core.types import ArtifactReference
from imgbundle.exceptions import BlobUploadError, NotFoundError, RegistryError, RegistryUnavailableError
from imgbundle.lockconfig import IMAGES_LOCK_PATH, ImageRef, ImagesLock
from imgbundle.utils.digest import calculate_digest

CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"
LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar"


def make_image(content=b"layer", annotations=None) -> ImageArtifact:
    """Build a single-layer image whose digest depends on content."""
    config = json.dumps({"architecture": "amd64", "os": "linux"}).encode("utf-8")
    manifest = {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": {
            "mediaType": CONFIG_MEDIA_TYPE,
            "digest": calculate_digest(config),
            "size": len(config),
        },
        "layers": [
            {
                "mediaType": LAYER_MEDIA_TYPE,
                "digest": calculate_digest(content),
                "size": len(content),
            }
        ],
    }
    if annotations:
        manifest["annotations"] = annotations
    return ImageArtifact(
        manifest=json.dumps(manifest, sort_keys=True).encode("utf-8"),
        media_type=OCI_MANIFEST,
        blobs={calculate_digest(config): config, calculate_digest(content): content},
    )


def make_index(*images) -> ImageArtifact:
    manifest = {
        "schemaVersion": 2,
        "mediaType": OCI_INDEX,
        "manifests": [
            {"mediaType": image.media_type, "digest": image.digest, "size": len(image.manifest)}
            for image in images
        ],
    }
    return ImageArtifact(
        manifest=json.dumps(manifest, sort_keys=True).encode("utf-8"),
        media_type=OCI_INDEX,
        children=list(images),
    )


def make_layer_tar(files, compress=False) -> bytes:
    """Build a tar layer from {path: content}."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, fileobj=io.BytesIO(content))
    data = buffer.getvalue()
    return gzip.compress(data) if compress else data


def make_bundle(image_urls, annotations=None, compress=False, name="bundle") -> ImageArtifact:
    """Build a bundle image embedding an images lock for image_urls."""
    lock = ImagesLock(
        images=[ImageRef(image=url, annotations=(annotations or {}).get(url, {})) for url in image_urls]
    )
    layer = make_layer_tar(
        {
            f"./{IMAGES_LOCK_PATH}": lock.as_bytes(),
            "config/values.yml": f"name: {name}\n".encode("utf-8"),
        },
        compress=compress,
    )
    return make_image(layer, annotations={BUNDLE_ANNOTATION: "true"})


class FakeRegistry:
    """In-memory registry double.

    Records every write, every tag pointer write and the peak number of
    concurrent fetch_image and exists calls.
    Urls in fail_fetch, fail_write and fail_exists raise on that call.
    """

    def __init__(self, delay=0.0, exists_delay=0.0):
        self.delay = delay
        self.exists_delay = exists_delay
        self.images = {}
        self.tags = {}
        self.writes = []
        self.tag_writes = []
        self.exists_calls = []
        self.fail_fetch = set()
        self.fail_exists = set()
        self.fail_write = set()
        self.reported_digest = None
        self.in_flight = 0
        self.peak_in_flight = 0
        self.exists_in_flight = 0
        self.peak_exists_in_flight = 0
        self.started = asyncio.Event()

    def push(self, repository, image, tag=None) -> str:
        for artifact in image.walk():
            self.images[(repository, artifact.digest)] = artifact
        if tag:
            self.tags[(repository, tag)] = image.digest
        return f"{repository}@{image.digest}"

    def has(self, url) -> bool:
        repository, digest = url.split("@")
        return (repository, digest) in self.images

    def _get(self, ref):
        digest = ref.digest or self.tags.get((ref.repository, ref.tag or "latest"))
        image = self.images.get((ref.repository, digest))
        if image is None:
            raise NotFoundError(f"'{ref}' not found")
        return image

    async def resolve_digest(self, ref):
        return self._get(ref).digest

    async def fetch_manifest(self, ref):
        image = self._get(ref)
        return image.manifest, image.media_type

    async def fetch_image(self, ref):
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        self.started.set()
        try:
            await asyncio.sleep(self.delay)
            if ref.url in self.fail_fetch:
                raise RegistryError(f"simulated failure fetching {ref.url}")
            return self._get(ref)
        finally:
            self.in_flight -= 1

    async def write_image(self, ref, image, tag=None):
        await asyncio.sleep(self.delay)
        if ref.url in self.fail_write:
            raise BlobUploadError(f"simulated failure writing {ref.url}")
        self.writes.append(ref.url)
        self.push(ref.repository, image, tag)
        return self.reported_digest or image.digest

    async def tag_image(self, ref, tag):
        image = self._get(ref)
        self.tag_writes.append((ref.repository, tag))
        self.tags[(ref.repository, tag)] = image.digest
        return image.digest

    async def exists(self, ref):
        self.exists_calls.append(ref.url)
        self.exists_in_flight += 1
        self.peak_exists_in_flight = max(self.peak_exists_in_flight, self.exists_in_flight)
        try:
            await asyncio.sleep(self.exists_delay)
            if ref.url in self.fail_exists:
                raise RegistryUnavailableError(f"simulated outage checking {ref.url}")
            return (ref.repository, ref.digest) in self.images
        finally:
            self.exists_in_flight -= 1


def create_registry_app() -> web.Application:
    """Minimal unauthenticated Distribution v2 registry for HTTP client tests."""
    manifests = {}
    blobs = {}
    uploads = {}

    async def api_root(request):
        return web.json_response({})

    async def get_manifest(request):
        name, reference = request.match_info["name"], request.match_info["reference"]
        entry = manifests.get((name, reference))
        if entry is None:
            return web.Response(status=404)
        body, media_type = entry
        return web.Response(
            body=body,
            headers={"Content-Type": media_type, "Docker-Content-Digest": calculate_digest(body)},
        )

    async def put_manifest(request):
        name, reference = request.match_info["name"], request.match_info["reference"]
        body = await request.read()
        digest = calculate_digest(body)
        entry = (body, request.headers.get("Content-Type", OCI_MANIFEST))
        manifests[(name, digest)] = entry
        manifests[(name, reference)] = entry
        return web.Response(status=201, headers={"Docker-Content-Digest": digest})

    async def get_blob(request):
        key = (request.match_info["name"], request.match_info["digest"])
        if key not in blobs:
            return web.Response(status=404)
        return web.Response(body=blobs[key], content_type="application/octet-stream")

    async def start_upload(request):
        upload_id = uuid.uuid4().hex
        uploads[upload_id] = bytearray()
        location = f"/v2/{request.match_info['name']}/blobs/uploads/{upload_id}"
        return web.Response(status=202, headers={"Location": location})

    async def patch_upload(request):
        upload_id = request.match_info["upload_id"]
        uploads[upload_id] += await request.read()
        location = f"/v2/{request.match_info['name']}/blobs/uploads/{upload_id}"
        return web.Response(status=202, headers={"Location": location})

    async def finish_upload(request):
        upload_id = request.match_info["upload_id"]
        data = bytes(uploads.pop(upload_id)) + await request.read()
        digest = request.query["digest"]
        if calculate_digest(data) != digest:
            return web.Response(status=400)
        blobs[(request.match_info["name"], digest)] = data
        return web.Response(status=201, headers={"Docker-Content-Digest": digest})

    app = web.Application()
    app.router.add_get("/v2/", api_root)
    app.router.add_get("/v2/{name:.+}/manifests/{reference}", get_manifest)
    app.router.add_put("/v2/{name:.+}/manifests/{reference}", put_manifest)
    app.router.add_post("/v2/{name:.+}/blobs/uploads/", start_upload)
    app.router.add_patch("/v2/{name:.+}/blobs/uploads/{upload_id}", patch_upload)
    app.router.add_put("/v2/{name:.+}/blobs/uploads/{upload_id}", finish_upload)
    app.router.add_get("/v2/{name:.+}/blobs/{digest}", get_blob)
    return app


def digest_of(url) -> str:
    return ArtifactReference(*url.split("@")).digest
