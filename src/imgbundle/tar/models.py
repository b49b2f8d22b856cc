"""Data models for archive handling."""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ArchiveEntry:
    """A top-level artifact recorded in an archive."""

    url: str  # original repository@digest, used to rebuild references on import
    digest: str
    media_type: str
    tag: Optional[str] = None
    bundle: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "url": self.url,
            "digest": self.digest,
            "mediaType": self.media_type,
        }
        if self.tag:
            data["tag"] = self.tag
        if self.bundle:
            data["bundle"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchiveEntry":
        return cls(
            url=data["url"],
            digest=data["digest"],
            media_type=data["mediaType"],
            tag=data.get("tag"),
            bundle=bool(data.get("bundle", False)),
        )
