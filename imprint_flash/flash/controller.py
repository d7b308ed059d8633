"""Flash workflow controller.

This module owns the lifecycle of one flash operation:

    Idle -> Configuring -> AwaitingStartConfirm -> Flashing
        -> AwaitingCancelConfirm -> (Flashing | Terminal) -> Idle

Safety rules enforced here:
- A flash needs two explicit requests (arm, then confirm); any change of
  device or image in between disarms the confirmation
- The image must fit on the device, compared on exact integers
- Cancelling also needs a confirmation, and the controller keeps waiting
  for the backend's terminal event after sending it
- Only one flash at a time; selection changes are refused while flashing
- Backend events that arrive with no flash in flight are discarded

The controller is single-threaded: action methods and handle_event() must
be called from the same thread. Observers register with subscribe() and
receive an immutable WorkflowSnapshot whenever it changes.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import NoReturn

from imprint_flash.flash.backend import (
    BackendCommandError,
    BackendEvent,
    BackendNotice,
    DeviceListChanged,
    FlashBackend,
    FlashCompleted,
    FlashFailed,
    ImageSelected,
    Progress,
)
from imprint_flash.flash.device import Device, DeviceCatalog
from imprint_flash.flash.image import ImageReference, clean_image_path, resolve_image
from imprint_flash.flash.progress import (
    Done,
    ProgressAggregator,
    ProgressSnapshot,
    Writing,
)
from imprint_flash.flash.sizes import format_bytes, greater_than
from imprint_flash.types import ConfirmationIntent, ValidationReason, WorkflowPhase

logger = logging.getLogger(__name__)

_VALIDATION_MESSAGES = {
    ValidationReason.NO_DEVICE_SELECTED: "Select a device to flash the image to!",
    ValidationReason.NO_IMAGE_SELECTED: "Select a disk image to flash to device!",
    ValidationReason.IMAGE_TOO_LARGE: "The disk image is larger than the device!",
}

# Phases in which image and device can still be chosen
_SETUP_PHASES = (WorkflowPhase.IDLE, WorkflowPhase.CONFIGURING)


class ValidationError(Exception):
    """A flash request was rejected before reaching the backend."""

    def __init__(self, reason: ValidationReason, message: str | None = None) -> None:
        self.reason = reason
        self.message = message or _VALIDATION_MESSAGES[reason]
        self.error_code = reason.value
        super().__init__(self.message)


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Immutable view of the controller state for the presentation layer.

    Attributes:
        phase: Current workflow phase.
        confirmation: Pending confirmation, if any.
        device: Selected device (the flash target once flashing started).
        image: Selected image (the flashed image once flashing started).
        progress: Progress of the current flash.
        devices: Devices available for selection.
        cancel_requested: Cancel was confirmed; waiting for the backend.
        notice: Dismissible message for the user.
    """

    phase: WorkflowPhase
    confirmation: ConfirmationIntent
    device: Device | None
    image: ImageReference | None
    progress: ProgressSnapshot
    devices: tuple[Device, ...]
    cancel_requested: bool = False
    notice: str | None = None

    @property
    def percent(self) -> int:
        """Progress percentage (0-100)."""
        if isinstance(self.progress, (Writing, Done)):
            return self.progress.percent
        return 0

    @property
    def is_flashing(self) -> bool:
        """Whether a flash is in flight."""
        return self.phase in (
            WorkflowPhase.FLASHING,
            WorkflowPhase.AWAITING_CANCEL_CONFIRM,
        )


SnapshotCallback = Callable[[WorkflowSnapshot], None]


class FlashWorkflowController:
    """State machine for flashing one image onto one device.

    Attributes:
        catalog: Devices reported by the backend and the current selection.
        progress: Aggregated progress of the running flash.
    """

    def __init__(self, backend: FlashBackend) -> None:
        """Initialize the controller in the Idle phase.

        Args:
            backend: Backend that receives start/cancel/enumerate/prompt
                commands.
        """
        self._backend = backend
        self.catalog = DeviceCatalog()
        self.progress = ProgressAggregator()

        # IDLE, CONFIGURING, FLASHING or TERMINAL; the confirmation
        # phases are derived from the intent
        self._phase = WorkflowPhase.IDLE
        self._intent = ConfirmationIntent.NONE
        self._image: ImageReference | None = None
        self._flash_device: Device | None = None
        self._flash_image: ImageReference | None = None
        self._cancel_requested = False
        self._notice: str | None = None

        self._subscribers: list[SnapshotCallback] = []
        self._snapshot = self._build_snapshot()

    # State

    @property
    def phase(self) -> WorkflowPhase:
        """Current workflow phase."""
        if self._intent == ConfirmationIntent.AWAITING_START_CONFIRM:
            return WorkflowPhase.AWAITING_START_CONFIRM
        if self._intent == ConfirmationIntent.AWAITING_CANCEL_CONFIRM:
            return WorkflowPhase.AWAITING_CANCEL_CONFIRM
        return self._phase

    @property
    def snapshot(self) -> WorkflowSnapshot:
        """Latest published snapshot."""
        return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a callback for snapshot changes.

        Args:
            callback: Called with each new snapshot.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _build_snapshot(self) -> WorkflowSnapshot:
        in_flight = self._phase in (WorkflowPhase.FLASHING, WorkflowPhase.TERMINAL)
        return WorkflowSnapshot(
            phase=self.phase,
            confirmation=self._intent,
            device=self._flash_device if in_flight else self.catalog.selected,
            image=self._flash_image if in_flight else self._image,
            progress=self.progress.snapshot,
            devices=self.catalog.devices,
            cancel_requested=self._cancel_requested,
            notice=self._notice,
        )

    def _publish(self) -> None:
        snapshot = self._build_snapshot()
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            callback(snapshot)

    def _selection_changed(self) -> None:
        """Disarm a pending start and settle Idle/Configuring."""
        if self._intent == ConfirmationIntent.AWAITING_START_CONFIRM:
            logger.info("Selection changed, discarding pending flash confirmation")
            self._intent = ConfirmationIntent.NONE
        if self._phase in _SETUP_PHASES:
            has_selection = self._image is not None or self.catalog.selected is not None
            self._phase = (
                WorkflowPhase.CONFIGURING if has_selection else WorkflowPhase.IDLE
            )

    def _accepts_selection(self, action: str) -> bool:
        if self._phase in _SETUP_PHASES:
            return True
        logger.warning("Ignoring %s while %s", action, self.phase.value)
        return False

    # Selection

    def select_image(self, path: str, size_bytes: int | None = None) -> bool:
        """Set (or clear, with an empty path) the image to flash.

        Args:
            path: Image path.
            size_bytes: Image size; resolved from the filesystem if None.

        Returns:
            True if applied, False if refused in the current phase.

        Raises:
            ImageNotFoundError: size_bytes is None and the path is missing.
            NotRegularFileError: size_bytes is None and the path is not a file.
        """
        if not self._accepts_selection("image selection"):
            return False

        path = clean_image_path(path)
        if not path:
            image = None
        elif size_bytes is None:
            image = resolve_image(path)
        else:
            image = ImageReference(path=path, size_bytes=size_bytes)

        self._image = image
        if image is None:
            logger.info("Image cleared")
        else:
            logger.info("Image selected: %s (%d bytes)", image.path, image.size_bytes)
        self._selection_changed()
        self._publish()
        return True

    def select_device(self, identifier: str) -> bool:
        """Select a target device from the current device list.

        Args:
            identifier: Device identifier.

        Returns:
            True if applied, False if refused in the current phase.

        Raises:
            DeviceNotFoundError: Identifier is not in the current list.
        """
        if not self._accepts_selection("device selection"):
            return False

        device = self.catalog.select(identifier)
        logger.info("Device selected: %s (%d bytes)", device.identifier, device.capacity_bytes)
        self._selection_changed()
        self._publish()
        return True

    # Flash and cancel

    def _reject(self, reason: ValidationReason, message: str | None = None) -> NoReturn:
        error = ValidationError(reason, message)
        logger.warning("Flash request rejected: %s", error.message)
        self._notice = error.message
        self._publish()
        raise error

    def _validate(self) -> tuple[Device, ImageReference]:
        device = self.catalog.selected
        if device is None:
            self._reject(ValidationReason.NO_DEVICE_SELECTED)
        image = self._image
        if image is None:
            self._reject(ValidationReason.NO_IMAGE_SELECTED)

        if greater_than(image.size_bytes, device.capacity_bytes):
            self._reject(
                ValidationReason.IMAGE_TOO_LARGE,
                f"The disk image ({format_bytes(image.size_bytes)}) is larger than "
                f"{device.label} ({format_bytes(device.capacity_bytes)})!",
            )
        return device, image

    def request_flash(self) -> bool:
        """Click "flash": arm the confirmation, or confirm if already armed.

        Returns:
            True if the request advanced the workflow, False if ignored.

        Raises:
            ValidationError: No device, no image, or the image does not fit.
        """
        phase = self.phase
        if phase == WorkflowPhase.AWAITING_START_CONFIRM:
            return self.confirm_pending()
        if phase not in _SETUP_PHASES:
            logger.warning("Ignoring flash request while %s", phase.value)
            return False

        self._validate()
        self._intent = ConfirmationIntent.AWAITING_START_CONFIRM
        logger.info("Flash armed, waiting for confirmation")
        self._publish()
        return True

    def _start_flash(self) -> bool:
        self._intent = ConfirmationIntent.NONE
        device, image = self._validate()

        self._flash_device = device
        self._flash_image = image
        self._cancel_requested = False
        self._notice = None
        self._phase = WorkflowPhase.FLASHING
        self.progress.begin(image.size_bytes)

        logger.info("Flashing %s to %s", image.path, device.identifier)
        try:
            self._backend.start_flash(image.path, device.identifier, device.capacity_bytes)
        except BackendCommandError as e:
            logger.error("Could not start flash: %s", e.message)
            self._finish_with_error(e.message)
            return True

        self._publish()
        return True

    def request_cancel(self) -> bool:
        """Click "cancel" during a flash: ask for confirmation.

        Returns:
            True if the confirmation was armed, False if ignored.
        """
        if self.phase != WorkflowPhase.FLASHING:
            logger.warning("Ignoring cancel request while %s", self.phase.value)
            return False

        self._intent = ConfirmationIntent.AWAITING_CANCEL_CONFIRM
        self._publish()
        return True

    def confirm_pending(self) -> bool:
        """Confirm the pending start or cancel.

        Returns:
            True if a pending confirmation was acted on, False otherwise.
        """
        if self._intent == ConfirmationIntent.AWAITING_START_CONFIRM:
            return self._start_flash()

        if self._intent == ConfirmationIntent.AWAITING_CANCEL_CONFIRM:
            self._intent = ConfirmationIntent.NONE
            logger.info("Cancelling flash")
            try:
                self._backend.cancel_flash()
            except BackendCommandError as e:
                logger.error("Could not cancel flash: %s", e.message)
                self._finish_with_error(e.message)
                return True
            self._cancel_requested = True
            self._publish()
            return True

        logger.warning("Nothing to confirm while %s", self.phase.value)
        return False

    def decline_pending(self) -> bool:
        """Dismiss the pending confirmation without side effects.

        Returns:
            True if a pending confirmation was dismissed, False otherwise.
        """
        if self._intent == ConfirmationIntent.NONE:
            return False
        self._intent = ConfirmationIntent.NONE
        self._publish()
        return True

    def _finish_with_error(self, message: str) -> None:
        self.progress.fail(message)
        self._phase = WorkflowPhase.TERMINAL
        self._intent = ConfirmationIntent.NONE
        self._publish()

    def dismiss(self) -> bool:
        """Leave the terminal phase, reset everything and refresh devices.

        Returns:
            True if the workflow was reset, False if not in Terminal.
        """
        if self._phase != WorkflowPhase.TERMINAL:
            logger.warning("Ignoring dismiss while %s", self.phase.value)
            return False

        self._image = None
        self._flash_device = None
        self._flash_image = None
        self.catalog.clear_selection()
        self.progress.reset()
        self._intent = ConfirmationIntent.NONE
        self._cancel_requested = False
        self._notice = None
        self._phase = WorkflowPhase.IDLE
        logger.info("Workflow reset")
        self._publish()

        self.refresh_devices()
        return True

    # Pass-through commands

    def refresh_devices(self) -> bool:
        """Ask the backend for a fresh device list.

        Returns:
            True if the request was dispatched.
        """
        try:
            self._backend.enumerate_devices()
        except BackendCommandError as e:
            logger.error("Could not enumerate devices: %s", e.message)
            self._notice = f"Error: {e.message}"
            self._publish()
            return False
        return True

    def prompt_for_image(self) -> bool:
        """Ask the backend to prompt for an image file.

        Returns:
            True if the prompt was dispatched.
        """
        if not self._accepts_selection("image prompt"):
            return False
        try:
            self._backend.prompt_for_image_file()
        except BackendCommandError as e:
            logger.error("Could not prompt for image: %s", e.message)
            self._notice = f"Error: {e.message}"
            self._publish()
            return False
        return True

    def dismiss_notice(self) -> None:
        """Clear the notice."""
        self._notice = None
        self._publish()

    # Backend events

    def handle_event(self, event: BackendEvent) -> None:
        """Apply a backend event.

        Args:
            event: Event to apply.

        Raises:
            TypeError: Unknown event type.
        """
        if isinstance(event, DeviceListChanged):
            self.catalog.replace(event.devices)
            self._selection_changed()
            self._publish()
        elif isinstance(event, ImageSelected):
            if self._phase not in _SETUP_PHASES:
                logger.debug("Discarding image selection while %s", self.phase.value)
                return
            self.select_image(event.path, event.size_bytes)
        elif isinstance(event, BackendNotice):
            self._notice = event.message
            self._publish()
        elif isinstance(event, (Progress, FlashCompleted, FlashFailed)):
            self._handle_flash_event(event)
        else:
            raise TypeError(f"Unknown backend event: {event!r}")

    def handle_events(self, events: Iterable[BackendEvent]) -> None:
        """Apply events in order."""
        for event in events:
            self.handle_event(event)

    def _handle_flash_event(self, event: Progress | FlashCompleted | FlashFailed) -> None:
        if self._phase != WorkflowPhase.FLASHING:
            logger.debug("Discarding %s while %s", type(event).__name__, self.phase.value)
            return

        if isinstance(event, Progress):
            self.progress.update(
                event.bytes_written,
                event.total_bytes,
                speed_label=event.speed_label,
                phase_label=event.phase_label,
            )
            self._publish()
        elif isinstance(event, FlashCompleted):
            logger.info("Flash completed")
            self.progress.complete()
            self._phase = WorkflowPhase.TERMINAL
            self._intent = ConfirmationIntent.NONE
            self._publish()
        else:
            logger.error("Flash failed: %s", event.message)
            self._finish_with_error(event.message)


__all__ = [
    "FlashWorkflowController",
    "SnapshotCallback",
    "ValidationError",
    "WorkflowSnapshot",
]
