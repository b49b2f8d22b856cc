"""Custom exceptions for bundle resolution and relocation."""


class RegistryError(Exception):
    """Base exception for all registry-related errors."""

    pass


class RegistryConnectionError(RegistryError):
    """Raised when unable to connect to the registry."""

    pass


class RegistryUnavailableError(RegistryConnectionError):
    """Raised when an existence check or transport call cannot be performed."""

    pass


class BlobUploadError(RegistryError):
    """Raised when blob upload fails."""

    pass


class ManifestError(RegistryError):
    """Raised when manifest operations fail."""

    pass


class NotFoundError(RegistryError):
    """Raised when a registry lookup misses."""

    pass


class TarReadError(RegistryError):
    """Raised when unable to read or parse an archive."""

    pass


class ValidationError(RegistryError):
    """Raised when inputs or archives fail validation."""

    pass


class ReferenceParseError(ValidationError):
    """Raised when a reference string is malformed."""

    pass


class WrongArtifactKindError(ValidationError):
    """Raised when a bundle is given where a plain image is expected, or vice versa."""

    pass


class SchemaError(ValidationError):
    """Raised when a lock document is malformed."""

    pass


class AmbiguousLockError(SchemaError):
    """Raised when a lock file parses as neither a BundleLock nor an ImagesLock."""

    def __init__(self, bundle_error: Exception, images_error: Exception) -> None:
        self.bundle_error = bundle_error
        self.images_error = images_error
        super().__init__(
            "Trying to read bundle or images lock file: "
            f"as BundleLock: {bundle_error}; as ImagesLock: {images_error}"
        )


class LockNotFoundError(RegistryError):
    """Raised when a bundle carries no embedded images lock."""

    pass


class IntegrityError(RegistryError):
    """Raised when content does not match its digest."""

    pass


class RelocationError(RegistryError):
    """Raised after a relocation when one or more images failed.

    Attributes:
        errors: (url, exception) pairs, in input order
        processed: images that were copied successfully before the failure
    """

    def __init__(self, errors, processed=None) -> None:
        self.errors = list(errors)
        self.processed = processed
        lines = [f"  - {url}: {error}" for url, error in self.errors]
        super().__init__(
            f"Failed to relocate {len(self.errors)} image(s):\n" + "\n".join(lines)
        )

    @property
    def failed_urls(self) -> list[str]:
        return [url for url, _ in self.errors]
