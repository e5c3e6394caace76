"""
Exceptions raised by modstore. Every fatal error derives from ModstoreError so the
CLI can report it as a single failure.
"""


class ModstoreError(RuntimeError):
    """Base exception for all application-specific errors."""


class InvalidIdentifierError(ModstoreError):
    """Raised when a package argument is neither an archive path nor namespace-name[-version]."""


class MetadataFetchError(ModstoreError):
    """Raised when the repository API cannot describe a package or version."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ArchiveFetchError(ModstoreError):
    """Raised when an archive cannot be downloaded into the cache."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"Failed to fetch {key}: {message}")
        self.key = key


class ManifestError(ModstoreError):
    pass


class ManifestMissingError(ManifestError):
    """Raised when an archive has no manifest.json entry."""


class ManifestInvalidError(ManifestError):
    """Raised when manifest.json cannot be parsed into a package manifest."""


class InstallerFailure(ModstoreError):
    """
    Describes a package whose installer run exited non-zero.

    It is handed to the install observer, not raised; the run returns the exit code.
    """

    def __init__(self, key: str, exit_code: int) -> None:
        super().__init__(f"Installer exited with code {exit_code} for {key}")
        self.key = key
        self.exit_code = exit_code


class ProfileError(ModstoreError):
    """Raised for unknown games or an unreadable profile store."""
