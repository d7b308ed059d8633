"""Interface to the flashing backend.

The backend enumerates devices, prompts for image files and performs the
actual write. Commands are fire-and-forget; results come back later as
events which the controller applies on its own thread.

Commands:
- start_flash(image_path, device_identifier, device_capacity_bytes)
- cancel_flash()
- prompt_for_image_file()
- enumerate_devices()

Events:
- DeviceListChanged, ImageSelected, Progress, FlashCompleted, FlashFailed
- BackendNotice (informational message for the user, e.g. a failed
  enumeration)
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Protocol, Union, runtime_checkable

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter

from imprint_flash.flash.device import Device
from imprint_flash.flash.sizes import as_magnitude

logger = logging.getLogger(__name__)


class BackendCommandError(Exception):
    """A command could not be dispatched to the backend."""

    def __init__(self, message: str, error_code: str = "BACKEND_COMMAND_FAILED") -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


@runtime_checkable
class FlashBackend(Protocol):
    """Commands the controller issues to the backend.

    Implementations must not block waiting for results and raise
    BackendCommandError when a command cannot be dispatched.
    """

    def start_flash(
        self, image_path: str, device_identifier: str, device_capacity_bytes: int
    ) -> None: ...

    def cancel_flash(self) -> None: ...

    def prompt_for_image_file(self) -> None: ...

    def enumerate_devices(self) -> None: ...


@dataclass(frozen=True)
class DeviceListChanged:
    """A fresh device enumeration."""

    devices: tuple[Device, ...]


@dataclass(frozen=True)
class ImageSelected:
    """The user chose an image through the backend's file prompt."""

    path: str
    size_bytes: int


@dataclass(frozen=True)
class Progress:
    """Progress of the running flash."""

    bytes_written: int
    total_bytes: int
    speed_label: str = ""
    phase_label: str = ""


@dataclass(frozen=True)
class FlashCompleted:
    """The flash finished successfully."""


@dataclass(frozen=True)
class FlashFailed:
    """The flash failed; the message is displayed verbatim."""

    message: str


@dataclass(frozen=True)
class BackendNotice:
    """A message for the user that is not tied to a flash."""

    message: str


BackendEvent = Union[
    DeviceListChanged,
    ImageSelected,
    Progress,
    FlashCompleted,
    FlashFailed,
    BackendNotice,
]


Magnitude = Annotated[int, BeforeValidator(as_magnitude)]


class DeviceSchema(BaseModel):
    """Schema for one device entry in the flasher's JSON device list.

    Attributes:
        identifier: Device path or handle.
        label: Human-readable label.
        capacity_bytes: Capacity in bytes (int or decimal string).
    """

    model_config = ConfigDict(extra="ignore")

    identifier: str = Field(min_length=1, description="Device path or handle")
    label: str = Field(default="", description="Human-readable label")
    capacity_bytes: Magnitude = Field(description="Capacity in bytes")

    def to_device(self) -> Device:
        """Convert to a Device record (label defaults to the identifier)."""
        return Device(
            identifier=self.identifier,
            label=self.label or self.identifier,
            capacity_bytes=self.capacity_bytes,
        )


_DEVICE_LIST_ADAPTER = TypeAdapter(list[DeviceSchema])


def parse_device_list(payload: str | bytes) -> DeviceListChanged:
    """Parse the flasher's JSON device list into an event.

    Args:
        payload: JSON array of device objects.

    Returns:
        DeviceListChanged event.

    Raises:
        pydantic.ValidationError: Payload does not match the schema.
    """
    entries = _DEVICE_LIST_ADAPTER.validate_json(payload)
    return DeviceListChanged(devices=tuple(entry.to_device() for entry in entries))


__all__ = [
    "BackendCommandError",
    "BackendEvent",
    "BackendNotice",
    "DeviceListChanged",
    "DeviceSchema",
    "FlashBackend",
    "FlashCompleted",
    "FlashFailed",
    "ImageSelected",
    "Progress",
    "parse_device_list",
]
