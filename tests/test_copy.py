"""Tests for copy orchestration."""

import os
import stat

import pytest
import yaml

from imgbundle.copy import CopyOptions, collect_image_urls, copy
from imgbundle.core.types import UnprocessedImageURL
from imgbundle.exceptions import (
    AmbiguousLockError,
    RelocationError,
    ValidationError,
    WrongArtifactKindError,
)
from imgbundle.lockconfig import BundleLock, BundleRef, ImageRef, ImagesLock, read_lock_file
from tests.helpers import FakeRegistry, digest_of, make_bundle, make_image


class TestCopyOptions:
    @pytest.mark.parametrize(
        "options, message",
        [
            (CopyOptions(to_repo="registry.io/c"), "Expected either --lock"),
            (
                CopyOptions(bundle="registry.io/b:v1", image="registry.io/a:v1", to_repo="registry.io/c"),
                "Expected either --lock",
            ),
            (CopyOptions(bundle="registry.io/b:v1"), "Expected either --to-tar or --to-repo"),
            (
                CopyOptions(bundle="registry.io/b:v1", to_repo="registry.io/c", to_tar="out.tar"),
                "Expected either --to-tar or --to-repo",
            ),
            (
                CopyOptions(from_tar="in.tar", to_tar="out.tar"),
                "Cannot use tar source",
            ),
            (
                CopyOptions(bundle="registry.io/b:v1", to_tar="out.tar", lock_output="lock.yml"),
                "Cannot output lock file with tar destination",
            ),
            (
                CopyOptions(bundle="registry.io/b:v1", to_repo="registry.io/c", concurrency=0),
                "concurrency",
            ),
            (
                CopyOptions(bundle="registry.io/b:v1", to_repo="registry.io/c:v1"),
                "without tag or digest",
            ),
            (
                CopyOptions(bundle="registry.io/b:v1", to_repo="Not A Repo"),
                "Building import repository ref",
            ),
        ],
    )
    def test_invalid_combinations(self, options, message):
        with pytest.raises(ValidationError, match=message):
            options.validate()

    def test_valid_combination(self):
        CopyOptions(bundle="registry.io/b:v1", to_repo="registry.io/c").validate()


class TestCopyBundle:
    @pytest.mark.asyncio
    async def test_bundle_to_repository(self, tmp_path, bundle_setup):
        registry = bundle_setup["registry"]
        lock_path = tmp_path / "bundle.lock.yml"
        image_digest = digest_of(bundle_setup["image_url"])
        bundle_digest = digest_of(bundle_setup["bundle_url"])

        result = await copy(
            CopyOptions(
                bundle="registry.io/repo-b:v1",
                to_repo="registry.io/repo-c",
                lock_output=str(lock_path),
            ),
            registry,
        )

        # No collocated copy of the image, so it is read from its original location
        assert [p.source for p in result.processed] == [
            UnprocessedImageURL(url=bundle_setup["image_url"]),
            UnprocessedImageURL(url=bundle_setup["bundle_url"], tag="v1"),
        ]
        assert [p.url for p in result.processed] == [
            f"registry.io/repo-c@{image_digest}",
            f"registry.io/repo-c@{bundle_digest}",
        ]
        assert result.bundle_url == bundle_setup["bundle_url"]
        assert registry.tags[("registry.io/repo-c", "v1")] == bundle_digest

        lock = read_lock_file(lock_path)
        assert lock == BundleLock(bundle=BundleRef(image=f"registry.io/repo-c@{bundle_digest}", tag="v1"))
        assert stat.S_IMODE(os.stat(lock_path).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_uses_collocated_copy(self, bundle_setup):
        registry = bundle_setup["registry"]
        registry.push("registry.io/repo-b", bundle_setup["image"])
        image_digest = digest_of(bundle_setup["image_url"])

        result = await copy(
            CopyOptions(bundle=bundle_setup["bundle_url"], to_repo="registry.io/repo-c"),
            registry,
        )

        assert result.processed.all()[0].source.url == f"registry.io/repo-b@{image_digest}"

    @pytest.mark.asyncio
    async def test_image_given_as_bundle(self, bundle_setup):
        registry = bundle_setup["registry"]

        with pytest.raises(WrongArtifactKindError, match="-i instead of -b"):
            await copy(
                CopyOptions(bundle="registry.io/repo-a:1.0", to_repo="registry.io/repo-c"),
                registry,
            )
        assert registry.writes == []

    @pytest.mark.asyncio
    async def test_bundle_given_as_image(self, bundle_setup):
        registry = bundle_setup["registry"]

        with pytest.raises(WrongArtifactKindError, match="-b instead of -i"):
            await copy(
                CopyOptions(image="registry.io/repo-b:v1", to_repo="registry.io/repo-c"),
                registry,
            )
        assert registry.writes == []

    @pytest.mark.asyncio
    async def test_self_entry_failure_still_copies_dependencies(self, bundle_setup):
        registry = bundle_setup["registry"]
        registry.fail_write.add(f"registry.io/repo-c@{digest_of(bundle_setup['bundle_url'])}")

        with pytest.raises(RelocationError) as exc_info:
            await copy(
                CopyOptions(bundle="registry.io/repo-b:v1", to_repo="registry.io/repo-c"),
                registry,
            )

        assert exc_info.value.failed_urls == [bundle_setup["bundle_url"]]
        assert registry.has(f"registry.io/repo-c@{digest_of(bundle_setup['image_url'])}")


class TestCopyImage:
    @pytest.mark.asyncio
    async def test_image_to_repository_writes_images_lock(self, tmp_path, registry):
        url = registry.push("registry.io/repo-a", make_image(), tag="1.0")
        lock_path = tmp_path / "images.lock.yml"

        result = await copy(
            CopyOptions(
                image="registry.io/repo-a:1.0",
                to_repo="registry.io/repo-c",
                lock_output=str(lock_path),
            ),
            registry,
        )

        assert result.bundle_url is None
        assert registry.tags[("registry.io/repo-c", "1.0")] == digest_of(url)
        assert read_lock_file(lock_path) == ImagesLock(
            images=[ImageRef(image=f"registry.io/repo-c@{digest_of(url)}")]
        )


class TestCopyFromLock:
    @pytest.mark.asyncio
    async def test_images_lock_keeps_annotations(self, tmp_path, registry):
        url = registry.push("registry.io/repo-a", make_image())
        input_lock = tmp_path / "in.yml"
        output_lock = tmp_path / "out.yml"
        ImagesLock(images=[ImageRef(image=url, annotations={"kbld.example/id": "app"})]).write_to_path(
            input_lock
        )

        await copy(
            CopyOptions(
                lock_path=str(input_lock),
                to_repo="registry.io/repo-c",
                lock_output=str(output_lock),
            ),
            registry,
        )

        written = yaml.safe_load(output_lock.read_text())
        assert written["images"] == [
            {
                "image": f"registry.io/repo-c@{digest_of(url)}",
                "annotations": {"kbld.example/id": "app"},
            }
        ]

    @pytest.mark.asyncio
    async def test_images_lock_must_not_contain_bundles(self, tmp_path, bundle_setup):
        input_lock = tmp_path / "in.yml"
        ImagesLock(images=[ImageRef(image=bundle_setup["bundle_url"])]).write_to_path(input_lock)

        with pytest.raises(WrongArtifactKindError, match="not contain bundle reference"):
            await collect_image_urls(
                CopyOptions(lock_path=str(input_lock), to_repo="registry.io/repo-c"),
                bundle_setup["registry"],
            )

    @pytest.mark.asyncio
    async def test_bundle_lock_input(self, tmp_path, bundle_setup):
        input_lock = tmp_path / "in.yml"
        BundleLock(bundle=BundleRef(image=bundle_setup["bundle_url"], tag="v1")).write_to_path(
            input_lock
        )

        collected = await collect_image_urls(
            CopyOptions(lock_path=str(input_lock), to_repo="registry.io/repo-c"),
            bundle_setup["registry"],
        )

        assert collected.bundle_url == bundle_setup["bundle_url"]
        assert collected.urls.all() == [
            UnprocessedImageURL(url=bundle_setup["image_url"]),
            UnprocessedImageURL(url=bundle_setup["bundle_url"], tag="v1"),
        ]

    @pytest.mark.asyncio
    async def test_ambiguous_lock_input(self, tmp_path, registry):
        input_lock = tmp_path / "in.yml"
        input_lock.write_text("apiVersion: v1\nkind: ConfigMap\n")

        with pytest.raises(AmbiguousLockError):
            await copy(CopyOptions(lock_path=str(input_lock), to_repo="registry.io/repo-c"), registry)


class TestCopyThroughArchive:
    @pytest.mark.asyncio
    async def test_bundle_to_tar_and_back(self, tmp_path, bundle_setup):
        archive = tmp_path / "bundle.tar"
        lock_path = tmp_path / "bundle.lock.yml"

        exported = await copy(
            CopyOptions(bundle="registry.io/repo-b:v1", to_tar=str(archive)),
            bundle_setup["registry"],
        )
        assert archive.exists()
        assert exported.lock is None

        target = FakeRegistry()
        imported = await copy(
            CopyOptions(
                from_tar=str(archive),
                to_repo="registry.internal/mirror",
                lock_output=str(lock_path),
            ),
            target,
        )

        bundle_digest = digest_of(bundle_setup["bundle_url"])
        assert imported.bundle_url == bundle_setup["bundle_url"]
        assert target.has(f"registry.internal/mirror@{digest_of(bundle_setup['image_url'])}")
        assert read_lock_file(lock_path).bundle == BundleRef(
            image=f"registry.internal/mirror@{bundle_digest}", tag="v1"
        )

    @pytest.mark.asyncio
    async def test_nested_bundles_recursive(self, registry):
        leaf = registry.push("registry.io/leaf", make_image(b"leaf"))
        inner = registry.push("registry.io/inner", make_bundle([leaf], name="inner"))
        registry.push("registry.io/outer", make_bundle([inner], name="outer"), tag="v1")

        result = await copy(
            CopyOptions(bundle="registry.io/outer:v1", to_repo="registry.io/mirror", recursive=True),
            registry,
        )

        assert len(result.processed) == 3
        assert registry.has(f"registry.io/mirror@{digest_of(leaf)}")
