"""Exception taxonomy for cratefix."""

from pathlib import Path


class CrateFixError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParseError(CrateFixError):
    """Malformed requirement, crate name, or manifest document."""


class NotFoundError(CrateFixError):
    """Crate or version absent in the registry, or key absent on removal."""


class ConflictError(CrateFixError):
    """Mutually exclusive inputs or an invalid kind/target/optional combination."""


class NetworkError(CrateFixError):
    """Registry or source host unreachable."""


class ManifestError(CrateFixError):
    """A manifest could not be read or written."""

    def __init__(self, path: Path | None, message: str):
        super().__init__(message)
        self.path = path
