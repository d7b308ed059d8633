"""Shared type definitions for imprint_flash.

This module contains enums shared across subpackages to avoid circular
imports.
"""

from enum import Enum


class WorkflowPhase(str, Enum):
    """Phase of the flash workflow."""

    IDLE = "idle"
    CONFIGURING = "configuring"
    AWAITING_START_CONFIRM = "awaiting-start-confirm"
    FLASHING = "flashing"
    AWAITING_CANCEL_CONFIRM = "awaiting-cancel-confirm"
    TERMINAL = "terminal"


class ConfirmationIntent(str, Enum):
    """Pending confirmation, at most one at a time."""

    NONE = "none"
    AWAITING_START_CONFIRM = "awaiting-start-confirm"
    AWAITING_CANCEL_CONFIRM = "awaiting-cancel-confirm"


class ValidationReason(str, Enum):
    """Reason a flash request was rejected before reaching the backend."""

    NO_DEVICE_SELECTED = "NO_DEVICE_SELECTED"
    NO_IMAGE_SELECTED = "NO_IMAGE_SELECTED"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"


__all__ = [
    "ConfirmationIntent",
    "ValidationReason",
    "WorkflowPhase",
]
