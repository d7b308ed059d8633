"""Parser for the flasher process' progress output.

The flasher writes dd-style status text, terminated by either CR (live
updates) or LF:

    [flash] Phase 1/2: Writing image to disk...
    52428800 bytes (52.4 MB, 50.0 MiB) copied, 2 s, 26.2 MB/s
    [flash] Phase 2/2: Validating written image...
    52428800 bytes (52.4 MB, 50.0 MiB) validated, 1.204 s, 43.5 MB/s

Phase lines start a new phase at zero bytes; byte lines report progress
within the current phase. Anything else is kept only as the last line,
which becomes the failure message if the process exits non-zero.
"""

import re
from dataclasses import dataclass, field

from imprint_flash.flash.backend import Progress

PHASE_PREFIX = "[flash] Phase"
UNKNOWN_PHASE = "Phase Unknown"

_BYTES_LINE = re.compile(r"^(\d+) bytes \(")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def split_output_lines(buffer: str) -> tuple[list[str], str]:
    """Split a buffer into complete lines on CR or LF.

    Args:
        buffer: Accumulated output text.

    Returns:
        Tuple of (complete lines, unterminated remainder).
    """
    parts = _LINE_BREAK.split(buffer)
    return parts[:-1], parts[-1]


@dataclass
class OutputParser:
    """Stateful parser turning flasher output lines into Progress events.

    Attributes:
        total_bytes: Size of the image being flashed.
        phase: Current phase label.
        last_line: Last non-empty line seen.
    """

    total_bytes: int
    phase: str = UNKNOWN_PHASE
    last_line: str = ""
    _buffer: str = field(default="", repr=False)

    def feed(self, chunk: str) -> list[Progress]:
        """Feed raw output text, returning events for complete lines."""
        lines, self._buffer = split_output_lines(self._buffer + chunk)
        events = []
        for line in lines:
            event = self.parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[Progress]:
        """Parse any unterminated remainder at end of output."""
        remainder, self._buffer = self._buffer, ""
        if not remainder:
            return []
        event = self.parse_line(remainder)
        return [event] if event is not None else []

    def parse_line(self, line: str) -> Progress | None:
        """Parse a single line.

        Args:
            line: Output line without terminator.

        Returns:
            Progress event, or None for lines that carry no progress.
        """
        text = line.strip()
        if not text:
            return None
        self.last_line = text

        if text.startswith(PHASE_PREFIX):
            self.phase = text[text.index(" ") + 1 :]
            return Progress(
                bytes_written=0,
                total_bytes=self.total_bytes,
                speed_label="0 B/s",
                phase_label=self.phase,
            )

        match = _BYTES_LINE.match(text)
        if match:
            return Progress(
                bytes_written=int(match.group(1)),
                total_bytes=self.total_bytes,
                speed_label=text.split(", ")[-1],
                phase_label=self.phase,
            )

        return None


__all__ = [
    "PHASE_PREFIX",
    "UNKNOWN_PHASE",
    "OutputParser",
    "split_output_lines",
]
