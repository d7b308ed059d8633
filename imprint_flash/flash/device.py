"""Device catalog for flash target selection.

This module holds the last device list reported by the backend:
- Devices are immutable records (identifier, label, capacity)
- A new enumeration replaces the whole set
- Any refresh resets the selection, even if the same identifier is
  still present, because its capacity or state may have changed

Device discovery itself is the backend's job; the catalog never
guesses or re-resolves a selection on its own.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from imprint_flash.flash.sizes import as_magnitude, format_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Device:
    """A removable block device reported by the backend.

    Attributes:
        identifier: Opaque path/handle (e.g., '/dev/sdb').
        label: Human-readable label (e.g., '/dev/sdb (SanDisk Ultra, 32.0 GB)').
        capacity_bytes: Total addressable size in bytes.
    """

    identifier: str
    label: str
    capacity_bytes: int

    def __post_init__(self) -> None:
        if not self.identifier:
            raise ValueError("device identifier must not be empty")
        object.__setattr__(self, "capacity_bytes", as_magnitude(self.capacity_bytes))

    def describe(self, binary: bool = False) -> str:
        """Return a display line with the formatted capacity."""
        return f"{self.label} [{format_bytes(self.capacity_bytes, binary)}]"


class DeviceNotFoundError(Exception):
    """Selected identifier is not in the current device set."""

    def __init__(self, identifier: str) -> None:
        self.message = f"Device not found: {identifier}"
        self.error_code = "DEVICE_NOT_FOUND"
        super().__init__(self.message)
        self.identifier = identifier


class DeviceCatalog:
    """Last-known device set and the current selection.

    Attributes:
        generation: Number of device lists applied so far.
    """

    def __init__(self) -> None:
        self._devices: tuple[Device, ...] = ()
        self._selected: str | None = None
        self.generation = 0

    @property
    def devices(self) -> tuple[Device, ...]:
        """Current device set."""
        return self._devices

    @property
    def selected(self) -> Device | None:
        """Selected device, or None."""
        if self._selected is None:
            return None
        return self.get(self._selected)

    def get(self, identifier: str) -> Device | None:
        """Look up a device by identifier in the current set."""
        for device in self._devices:
            if device.identifier == identifier:
                return device
        return None

    def replace(self, devices: Iterable[Device]) -> None:
        """Replace the device set wholesale and clear the selection.

        Args:
            devices: New device set from an enumeration.
        """
        self._devices = tuple(devices)
        if self._selected is not None:
            logger.debug("Device list refreshed, clearing selection %s", self._selected)
        self._selected = None
        self.generation += 1
        logger.info("Device list updated: %d device(s)", len(self._devices))

    def select(self, identifier: str) -> Device:
        """Select a device from the current set.

        Args:
            identifier: Device identifier.

        Returns:
            The selected device.

        Raises:
            DeviceNotFoundError: Identifier is not in the current set.
        """
        device = self.get(identifier)
        if device is None:
            raise DeviceNotFoundError(identifier)
        self._selected = identifier
        return device

    def clear_selection(self) -> None:
        """Reset the selection to none."""
        self._selected = None


__all__ = [
    "Device",
    "DeviceCatalog",
    "DeviceNotFoundError",
]
