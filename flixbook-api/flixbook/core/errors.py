# flixbook/core/errors.py


class FlixbookError(Exception):
    """Base class for errors raised by Flixbook."""


class GalleryUnavailable(FlixbookError):
    """The gallery as a whole could not be built (e.g. media root unreadable)."""


class ScanTimeout(FlixbookError):
    """A directory listing did not finish within the configured timeout."""

    def __init__(self, path, timeout: float) -> None:
        super().__init__(f"listing {path} exceeded {timeout:g}s")
        self.path = path
        self.timeout = timeout
