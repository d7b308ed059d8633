"""Progress aggregation for a running flash.

Raw progress notifications from the backend are folded into an immutable
ProgressSnapshot. Snapshots are replaced, never mutated, so observers can
compare them cheaply.

Rules applied to each notification:
- bytes_written is clamped to [0, total_bytes]
- within one phase, bytes_written never goes backwards
- a new phase label restarts the counter (e.g. writing -> validating)
- percent is floor(bytes_written * 100 / total_bytes), 0 for an empty total
"""

import logging
from dataclasses import dataclass
from typing import Union

from imprint_flash.flash.sizes import as_magnitude, clamp, format_bytes, percent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    """No flash in progress."""


@dataclass(frozen=True)
class Writing:
    """A flash is running.

    Attributes:
        bytes_written: Bytes processed in the current phase.
        total_bytes: Total bytes for the phase.
        speed_label: Backend-supplied transfer speed (e.g. '21.3 MB/s').
        phase_label: Backend-supplied phase description.
    """

    bytes_written: int
    total_bytes: int
    speed_label: str = ""
    phase_label: str = ""

    @property
    def percent(self) -> int:
        """Completed percentage, 0-100."""
        return percent(self.bytes_written, self.total_bytes)


@dataclass(frozen=True)
class Done:
    """The flash completed."""

    @property
    def percent(self) -> int:
        return 100


@dataclass(frozen=True)
class Error:
    """The flash failed.

    Attributes:
        message: Backend message, displayed verbatim.
    """

    message: str


ProgressSnapshot = Union[Idle, Writing, Done, Error]


class ProgressAggregator:
    """Folds backend progress notifications into a ProgressSnapshot."""

    def __init__(self) -> None:
        self._snapshot: ProgressSnapshot = Idle()

    @property
    def snapshot(self) -> ProgressSnapshot:
        """Current snapshot."""
        return self._snapshot

    @property
    def percent(self) -> int:
        """Percentage of the current snapshot (0 unless writing or done)."""
        if isinstance(self._snapshot, (Writing, Done)):
            return self._snapshot.percent
        return 0

    @property
    def is_terminal(self) -> bool:
        """Whether a terminal notification has been applied."""
        return isinstance(self._snapshot, (Done, Error))

    def begin(self, total_bytes: int) -> ProgressSnapshot:
        """Start a new flash with zero bytes written."""
        self._snapshot = Writing(bytes_written=0, total_bytes=as_magnitude(total_bytes))
        return self._snapshot

    def update(
        self,
        bytes_written: int,
        total_bytes: int,
        speed_label: str = "",
        phase_label: str = "",
    ) -> ProgressSnapshot:
        """Apply a progress notification.

        Args:
            bytes_written: Bytes processed as reported by the backend.
            total_bytes: Total bytes as reported by the backend.
            speed_label: Transfer speed label.
            phase_label: Phase description.

        Returns:
            The new snapshot.
        """
        total = as_magnitude(total_bytes)
        written = clamp(bytes_written, total)
        if written != bytes_written:
            logger.debug(
                "Clamped bytes_written %s to %d (total=%d)", bytes_written, written, total
            )

        previous = self._snapshot
        if (
            isinstance(previous, Writing)
            and previous.phase_label == phase_label
            and previous.total_bytes == total
            and written < previous.bytes_written
        ):
            logger.debug(
                "Progress went backwards (%d < %d), keeping previous value",
                written,
                previous.bytes_written,
            )
            written = previous.bytes_written

        self._snapshot = Writing(
            bytes_written=written,
            total_bytes=total,
            speed_label=speed_label,
            phase_label=phase_label,
        )
        return self._snapshot

    def complete(self) -> ProgressSnapshot:
        """Apply the completion signal."""
        self._snapshot = Done()
        return self._snapshot

    def fail(self, message: str) -> ProgressSnapshot:
        """Apply the failure signal."""
        self._snapshot = Error(message=message)
        return self._snapshot

    def reset(self) -> ProgressSnapshot:
        """Return to idle."""
        self._snapshot = Idle()
        return self._snapshot


def describe_progress(snapshot: ProgressSnapshot, binary: bool = False) -> str:
    """Render a one-line description of a snapshot.

    Writing snapshots render as '51% (512 B / 1.0 KB) - 3.2 MB/s'.

    Args:
        snapshot: Snapshot to render.
        binary: Use 1024-based units.

    Returns:
        Display string.
    """
    if isinstance(snapshot, Writing):
        line = (
            f"{snapshot.percent}% ({format_bytes(snapshot.bytes_written, binary)} / "
            f"{format_bytes(snapshot.total_bytes, binary)})"
        )
        if snapshot.speed_label:
            line = f"{line} - {snapshot.speed_label}"
        return line
    if isinstance(snapshot, Done):
        return "Completed flashing image to disk!"
    if isinstance(snapshot, Error):
        return snapshot.message
    return ""


__all__ = [
    "Done",
    "Error",
    "Idle",
    "ProgressAggregator",
    "ProgressSnapshot",
    "Writing",
    "describe_progress",
]
