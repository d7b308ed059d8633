"""Shared fixtures for workflow tests."""

import pytest

from imprint_flash.flash.backend import BackendCommandError, DeviceListChanged
from imprint_flash.flash.controller import FlashWorkflowController
from imprint_flash.flash.device import Device

TB = 1000**4


class FakeBackend:
    """Backend that records commands instead of dispatching them.

    Attributes:
        commands: Recorded (name, *args) tuples in call order.
        fail_on: Command names that raise BackendCommandError.
    """

    def __init__(self) -> None:
        self.commands: list[tuple] = []
        self.fail_on: set[str] = set()

    def _record(self, name: str, *args: object) -> None:
        if name in self.fail_on:
            raise BackendCommandError(f"{name} failed: backend unavailable")
        self.commands.append((name, *args))

    def start_flash(
        self, image_path: str, device_identifier: str, device_capacity_bytes: int
    ) -> None:
        self._record("start_flash", image_path, device_identifier, device_capacity_bytes)

    def cancel_flash(self) -> None:
        self._record("cancel_flash")

    def prompt_for_image_file(self) -> None:
        self._record("prompt_for_image_file")

    def enumerate_devices(self) -> None:
        self._record("enumerate_devices")

    def count(self, name: str) -> int:
        """Number of times a command was issued."""
        return sum(1 for command in self.commands if command[0] == name)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def controller(backend: FakeBackend) -> FlashWorkflowController:
    return FlashWorkflowController(backend)


@pytest.fixture
def usb_devices() -> tuple[Device, ...]:
    return (
        Device("/dev/sdb", "/dev/sdb (SanDisk Ultra, 32.0 GB)", 32_000_000_000),
        Device("/dev/sdc", "/dev/sdc (WD Elements, 4.0 TB)", 4 * TB),
    )


@pytest.fixture
def configured(
    controller: FlashWorkflowController, usb_devices: tuple[Device, ...]
) -> FlashWorkflowController:
    """Controller with a device list, /dev/sdb selected and a 1000-byte image."""
    controller.handle_event(DeviceListChanged(devices=usb_devices))
    controller.select_device("/dev/sdb")
    controller.select_image("/images/debian.iso", 1000)
    return controller
