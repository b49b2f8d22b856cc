"""Archive validation utilities."""

import json
import tarfile
from pathlib import Path
from typing import Any

from ..exceptions import ValidationError

INDEX_FILE = "index.json"
ARCHIVE_SCHEMA_VERSION = 1


def blob_path(digest: str) -> str:
    """Location of a blob or manifest inside an archive."""
    algorithm, hex_part = digest.split(":", 1)
    return f"blobs/{algorithm}/{hex_part}"


def is_path_exists(path: Path) -> bool:
    """Check if file path exists."""
    return path.exists()


def is_valid_tarfile(path: Path) -> bool:
    """Check if file is a valid tar file."""
    return tarfile.is_tarfile(path)


def get_tar_members(tar: tarfile.TarFile) -> set[str]:
    """Extract member names from tar file."""
    return {member.name for member in tar.getmembers()}


def extract_index_content(tar: tarfile.TarFile) -> str | None:
    """Extract index.json content from tar file."""
    try:
        index_member = tar.extractfile(INDEX_FILE)
        if index_member is None:
            return None
        return index_member.read().decode("utf-8")
    except (UnicodeDecodeError, KeyError):
        return None


def parse_index_json(index_content: str) -> dict[str, Any] | None:
    """Parse index JSON content."""
    try:
        index_data = json.loads(index_content)
    except json.JSONDecodeError:
        return None
    if not isinstance(index_data, dict):
        return None
    if index_data.get("schemaVersion") != ARCHIVE_SCHEMA_VERSION:
        return None
    if not isinstance(index_data.get("images"), list):
        return None
    return index_data


def has_required_fields(entry: Any, required_fields: list[str]) -> bool:
    """Check if index entry has all required fields."""
    return isinstance(entry, dict) and all(field in entry for field in required_fields)


def validate_index_entry(entry: Any, tar_members: set[str]) -> bool:
    """Validate a single index entry; its manifest must be present."""
    if not has_required_fields(entry, ["url", "digest", "mediaType"]):
        return False
    try:
        return blob_path(entry["digest"]) in tar_members
    except (AttributeError, ValueError):
        return False


def validate_archive(tar_path: Path) -> bool:
    """tar 파일이 유효한 번들 아카이브인지 검증합니다.

    Args:
        tar_path: 검증할 tar 파일 경로

    Returns:
        bool: index.json이 있고 모든 항목의 매니페스트가 존재하면 True

    Raises:
        ValidationError: 파일이 없거나 읽을 수 없는 경우
    """
    try:
        if not is_path_exists(tar_path):
            raise ValidationError(f"Tar file does not exist: {tar_path}")

        if not is_valid_tarfile(tar_path):
            return False

        with tarfile.open(tar_path, "r") as tar:
            tar_members = get_tar_members(tar)
            if INDEX_FILE not in tar_members:
                return False

            index_content = extract_index_content(tar)
            if index_content is None:
                return False

            index_data = parse_index_json(index_content)
            if index_data is None:
                return False

            return all(
                validate_index_entry(entry, tar_members) for entry in index_data["images"]
            )

    except (tarfile.TarError, OSError) as e:
        raise ValidationError(f"Error reading tar file: {e}") from e
