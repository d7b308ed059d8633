"""Subprocess bridge to an external flasher executable.

This module handles:
- Running `<flasher> devices --json` to enumerate removable devices
- Spawning `<flasher> flash <image> <device>` and streaming its output
- Cancelling a running flash by writing "stop" to the flasher's stdin
- Resolving images chosen through an injected file prompt

Commands return immediately; results are queued as backend events and
drained with poll_events() on the caller's thread, so the controller is
only ever touched from one thread.
"""

from __future__ import annotations

import logging
import queue
import shlex
import subprocess
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import IO

from pydantic import ValidationError

from imprint_flash.config import Settings
from imprint_flash.flash.backend import (
    BackendCommandError,
    BackendEvent,
    BackendNotice,
    FlashCompleted,
    FlashFailed,
    ImageSelected,
    parse_device_list,
)
from imprint_flash.flash.image import ImageError, resolve_image
from imprint_flash.flash.output import OutputParser

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled the operation!"

# Bytes read from the flasher's output per call
_READ_SIZE = 4096


class SubprocessBackend:
    """FlashBackend implementation driving a flasher executable.

    Attributes:
        command: Argument vector of the flasher executable.
        flash_flags: Extra flags appended to `flash` invocations.
    """

    def __init__(
        self,
        command: list[str],
        *,
        flash_flags: list[str] | None = None,
        prompt: Callable[[], str | None] | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            command: Argument vector of the flasher executable.
            flash_flags: Extra flags for `flash` (e.g. '--use-system-dd').
            prompt: Callable asking the user for an image path; returns
                None or '' when the user cancels.
        """
        if not command:
            raise ValueError("flasher command must not be empty")
        self.command = list(command)
        self.flash_flags = list(flash_flags or [])
        self._prompt = prompt
        self._events: queue.Queue[BackendEvent] = queue.Queue()
        self._lock = threading.Lock()
        self._process: subprocess.Popen[bytes] | None = None
        self._cancelled = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        prompt: Callable[[], str | None] | None = None,
    ) -> SubprocessBackend:
        """Build a backend from application settings."""
        return cls(
            settings.flasher_argv(),
            flash_flags=settings.flasher_flags(),
            prompt=prompt,
        )

    @property
    def is_flashing(self) -> bool:
        """Whether a flasher process is running."""
        with self._lock:
            return self._process is not None and self._process.poll() is None

    # Event queue

    def post(self, event: BackendEvent) -> None:
        """Queue an event for the controller thread."""
        self._events.put(event)

    def poll_events(self, timeout: float = 0.0) -> Iterator[BackendEvent]:
        """Drain queued events.

        Waits up to `timeout` seconds for the first event, then yields
        whatever else is already queued.

        Args:
            timeout: Seconds to wait for the first event.

        Yields:
            Backend events in arrival order.
        """
        try:
            if timeout > 0:
                event = self._events.get(timeout=timeout)
            else:
                event = self._events.get_nowait()
        except queue.Empty:
            return
        yield event
        while True:
            try:
                yield self._events.get_nowait()
            except queue.Empty:
                return

    # Commands

    def enumerate_devices(self) -> None:
        """Request a device list; the result arrives as an event."""
        cmd = [*self.command, "devices", "--json"]
        logger.info("Enumerating devices: %s", shlex.join(cmd))
        thread = threading.Thread(
            target=self._run_enumeration, args=(cmd,), name="imprint-enumerate", daemon=True
        )
        thread.start()

    def _run_enumeration(self, cmd: list[str]) -> None:
        try:
            result = subprocess.run(cmd, capture_output=True, check=True)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
            message = stderr or f"device enumeration exited with code {e.returncode}"
            logger.error("Device enumeration failed: %s", message)
            self.post(BackendNotice(f"Error: {message}"))
            return
        except OSError as e:
            logger.error("Failed to run device enumeration: %s", e)
            self.post(BackendNotice(f"Error: {e}"))
            return

        try:
            event = parse_device_list(result.stdout)
        except ValidationError as e:
            logger.error("Invalid device list from flasher: %s", e)
            self.post(BackendNotice("Error: flasher returned an invalid device list"))
            return

        self.post(event)

    def prompt_for_image_file(self) -> None:
        """Ask the user for an image; a valid choice arrives as ImageSelected."""
        if self._prompt is None:
            raise BackendCommandError("No file prompt is available")

        path = self._prompt()
        if not path:
            logger.debug("Image prompt cancelled")
            return

        try:
            image = resolve_image(path)
        except ImageError as e:
            self.post(BackendNotice(f"Error: {e.message}"))
            return
        self.post(ImageSelected(path=image.path, size_bytes=image.size_bytes))

    def start_flash(
        self, image_path: str, device_identifier: str, device_capacity_bytes: int
    ) -> None:
        """Spawn the flasher for one image/device pair.

        Args:
            image_path: Path to the image file.
            device_identifier: Target device path.
            device_capacity_bytes: Target capacity (logged only; the
                controller has already validated the fit).

        Raises:
            BackendCommandError: A flash is already running, the image
                cannot be read, or the process cannot be started.
        """
        try:
            total_bytes = Path(image_path).stat().st_size
        except OSError as e:
            raise BackendCommandError(f"Cannot read image {image_path}: {e}") from e

        cmd = [*self.command, "flash", image_path, device_identifier, *self.flash_flags]

        with self._lock:
            if self._process is not None and self._process.poll() is None:
                raise BackendCommandError("A flash is already running")

            logger.info(
                "Starting flash: %s (image=%d bytes, capacity=%d bytes)",
                shlex.join(cmd),
                total_bytes,
                device_capacity_bytes,
            )
            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    # Own session: terminal SIGINT must not reach the flasher,
                    # which only stops on "stop" from cancel_flash()
                    start_new_session=True,
                )
            except OSError as e:
                logger.error("Failed to start flasher: %s", e)
                raise BackendCommandError(f"Failed to start flasher: {e}") from e

            self._process = process
            self._cancelled = False

        thread = threading.Thread(
            target=self._watch_flash,
            args=(process, OutputParser(total_bytes=total_bytes)),
            name="imprint-flash",
            daemon=True,
        )
        thread.start()

    def _watch_flash(self, process: subprocess.Popen[bytes], parser: OutputParser) -> None:
        stdout: IO[bytes] | None = process.stdout
        if stdout is not None:
            while True:
                chunk = stdout.read1(_READ_SIZE)  # type: ignore[attr-defined]
                if not chunk:
                    break
                for event in parser.feed(chunk.decode(errors="replace")):
                    self.post(event)
            for event in parser.flush():
                self.post(event)
            stdout.close()

        exit_code = process.wait()
        with self._lock:
            cancelled = self._cancelled
            if process.stdin is not None and not process.stdin.closed:
                process.stdin.close()

        if cancelled:
            logger.info("Flasher stopped after cancellation (exit code %d)", exit_code)
            self.post(FlashFailed(CANCELLED_MESSAGE))
        elif exit_code == 0:
            logger.info("Flasher finished successfully")
            self.post(FlashCompleted())
        else:
            message = parser.last_line or f"flasher exited with code {exit_code}"
            logger.error("Flasher failed (exit code %d): %s", exit_code, message)
            self.post(FlashFailed(message))

    def cancel_flash(self) -> None:
        """Ask the running flasher to stop.

        If the flasher has already exited, its terminal event is queued or
        about to be, so nothing is sent and the outcome is left as reported.

        Raises:
            BackendCommandError: No flash was started, or the stop request
                could not be written.
        """
        with self._lock:
            process = self._process
            if process is None:
                raise BackendCommandError("No flash is running")
            if process.stdin is None:
                raise BackendCommandError("Flasher does not accept input")
            if process.poll() is not None or process.stdin.closed:
                logger.info("Flasher already exited, not sending stop")
                return

            logger.info("Sending stop to flasher (pid=%d)", process.pid)
            try:
                process.stdin.write(b"stop\n")
                process.stdin.flush()
            except BrokenPipeError:
                logger.info("Flasher exited before the stop request was read")
                return
            except OSError as e:
                logger.error("Failed to send stop to flasher: %s", e)
                raise BackendCommandError(f"Error occurred when cancelling: {e}") from e
            self._cancelled = True


__all__ = [
    "CANCELLED_MESSAGE",
    "SubprocessBackend",
]
