"""Disk image flashing workflow.

This module handles:
- Device selection from backend enumerations
- Image size validation against device capacity (exact integers)
- Two-step confirmation before starting or cancelling a flash
- Aggregation of backend progress into display-ready snapshots

The byte-level write is performed by an external flasher process;
see imprint_flash.flash.process for the subprocess bridge.
"""

from imprint_flash.flash.backend import (
    BackendCommandError,
    BackendNotice,
    DeviceListChanged,
    FlashBackend,
    FlashCompleted,
    FlashFailed,
    ImageSelected,
    Progress,
)
from imprint_flash.flash.controller import (
    FlashWorkflowController,
    ValidationError,
    WorkflowSnapshot,
)
from imprint_flash.flash.device import Device, DeviceCatalog, DeviceNotFoundError
from imprint_flash.flash.image import (
    ImageNotFoundError,
    ImageReference,
    NotRegularFileError,
    resolve_image,
)
from imprint_flash.flash.process import SubprocessBackend
from imprint_flash.flash.progress import (
    Done,
    Error,
    Idle,
    ProgressAggregator,
    ProgressSnapshot,
    Writing,
)

__all__ = [
    # Backend interface
    "BackendCommandError",
    "BackendNotice",
    "DeviceListChanged",
    "FlashBackend",
    "FlashCompleted",
    "FlashFailed",
    "ImageSelected",
    "Progress",
    "SubprocessBackend",
    # Controller
    "FlashWorkflowController",
    "ValidationError",
    "WorkflowSnapshot",
    # Devices and images
    "Device",
    "DeviceCatalog",
    "DeviceNotFoundError",
    "ImageNotFoundError",
    "ImageReference",
    "NotRegularFileError",
    "resolve_image",
    # Progress
    "Done",
    "Error",
    "Idle",
    "ProgressAggregator",
    "ProgressSnapshot",
    "Writing",
]
