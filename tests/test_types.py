"""Tests for configuration and copy request types."""

from imgbundle.core.types import (
    ArtifactReference,
    ProcessedImage,
    ProcessedImages,
    RegistryConfig,
    UnprocessedImageURL,
    UnprocessedImageURLs,
)
from imgbundle.exceptions import RelocationError

URL_A = "registry.io/repo-a@sha256:" + "a" * 64
URL_B = "registry.io/repo-a@sha256:" + "b" * 64


class TestRegistryConfig:
    def test_defaults(self):
        config = RegistryConfig.from_env({})

        assert config == RegistryConfig()
        assert config.timeout == 30
        assert config.concurrent_blob_transfers == 3

    def test_from_env(self):
        config = RegistryConfig.from_env(
            {
                "IMGBUNDLE_TIMEOUT": "5",
                "IMGBUNDLE_INSECURE_REGISTRIES": "localhost:5000, registry.local ,",
                "IMGBUNDLE_BLOB_CONCURRENCY": "8",
            }
        )

        assert config.timeout == 5
        assert config.insecure_registries == ("localhost:5000", "registry.local")
        assert config.concurrent_blob_transfers == 8

    def test_scheme_for(self):
        config = RegistryConfig(insecure_registries=("localhost:5000",))

        assert config.scheme_for("localhost:5000") == "http"
        assert config.scheme_for("registry.io") == "https"


class TestUnprocessedImageURLs:
    def test_keeps_first_position(self):
        urls = UnprocessedImageURLs(
            [
                UnprocessedImageURL(URL_A),
                UnprocessedImageURL(URL_B),
                UnprocessedImageURL(URL_A),
            ]
        )

        assert [u.url for u in urls] == [URL_A, URL_B]

    def test_later_tag_fills_missing_tag(self):
        urls = UnprocessedImageURLs([UnprocessedImageURL(URL_A), UnprocessedImageURL(URL_A, "v1")])

        assert urls.all() == [UnprocessedImageURL(URL_A, "v1")]

    def test_existing_tag_is_kept(self):
        urls = UnprocessedImageURLs([UnprocessedImageURL(URL_A, "v1"), UnprocessedImageURL(URL_A, "v2")])

        assert urls.all() == [UnprocessedImageURL(URL_A, "v1")]


class TestProcessedImages:
    def test_lookup_by_source_url(self):
        image = ProcessedImage(
            source=UnprocessedImageURL(URL_A),
            destination=ArtifactReference("registry.io/repo-c", "sha256:" + "a" * 64),
        )
        processed = ProcessedImages([image])

        assert processed.for_url(URL_A) is image
        assert processed.for_url(URL_B) is None
        assert image.url == "registry.io/repo-c@sha256:" + "a" * 64


def test_relocation_error_lists_every_failure():
    error = RelocationError([(URL_A, RuntimeError("boom")), (URL_B, RuntimeError("bang"))])

    assert error.failed_urls == [URL_A, URL_B]
    assert f"{URL_A}: boom" in str(error)
    assert f"{URL_B}: bang" in str(error)
    assert error.processed is None
