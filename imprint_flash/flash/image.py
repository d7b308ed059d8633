"""Disk image references.

An image is identified by its path; its size is resolved once, when the
path is set, and never re-read during the workflow.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from imprint_flash.flash.sizes import as_magnitude

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageReference:
    """A chosen disk image.

    Attributes:
        path: Path to the image file as entered or chosen.
        size_bytes: Size of the image in bytes.
    """

    path: str
    size_bytes: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "size_bytes", as_magnitude(self.size_bytes))

    @property
    def name(self) -> str:
        """File name of the image, for display."""
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]


class ImageError(Exception):
    """Base exception for image resolution errors."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ImageNotFoundError(ImageError):
    """Image file does not exist."""

    def __init__(self, image_path: str) -> None:
        super().__init__(
            f"Image file not found: {image_path}", error_code="IMAGE_NOT_FOUND"
        )
        self.image_path = image_path


class NotRegularFileError(ImageError):
    """Image path exists but is not a regular file."""

    def __init__(self, image_path: str) -> None:
        super().__init__(
            f"Select a regular file! {image_path} is not one.",
            error_code="NOT_REGULAR_FILE",
        )
        self.image_path = image_path


def clean_image_path(path: str) -> str:
    """Strip newlines from a path typed into a text field."""
    return path.replace("\r", "").replace("\n", "")


def resolve_image(path: str) -> ImageReference:
    """Resolve an image path to a reference with its size.

    Args:
        path: Path to the image file.

    Returns:
        ImageReference with the file size.

    Raises:
        ImageNotFoundError: Path does not exist.
        NotRegularFileError: Path is not a regular file.
    """
    path = clean_image_path(path)
    image_path = Path(path)

    if not image_path.exists():
        raise ImageNotFoundError(path)
    if not image_path.is_file():
        raise NotRegularFileError(path)

    size = image_path.stat().st_size
    logger.debug("Resolved image %s (%d bytes)", path, size)
    return ImageReference(path=path, size_bytes=size)


__all__ = [
    "ImageError",
    "ImageNotFoundError",
    "ImageReference",
    "NotRegularFileError",
    "clean_image_path",
    "resolve_image",
]
