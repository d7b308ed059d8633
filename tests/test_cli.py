"""Smoke tests for the CLI.

These tests drive the CLI against a scripted flasher executable, so no
real block devices are touched.
"""

import json
import shlex
import subprocess
import sys
import textwrap
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from imprint_flash import __version__
from imprint_flash.cli import _render_progress, app
from imprint_flash.flash.controller import FlashWorkflowController, WorkflowSnapshot
from imprint_flash.flash.process import SubprocessBackend
from imprint_flash.flash.progress import Writing
from imprint_flash.types import ConfirmationIntent, WorkflowPhase

runner = CliRunner()

FLASHER = textwrap.dedent(
    """
    import json
    import select
    import sys

    capacity = {capacity!r}
    mode = {mode!r}
    args = sys.argv[1:]

    if args[:2] == ["devices", "--json"]:
        if mode == "no-devices":
            print("[]")
        elif mode == "broken":
            print("permission denied", file=sys.stderr)
            sys.exit(1)
        else:
            print(json.dumps([
                {{"identifier": "/dev/sdb", "label": "SanDisk Ultra", "capacity_bytes": capacity}},
                {{"identifier": "/dev/sdc", "label": "WD Elements", "capacity_bytes": capacity}},
            ]))
        sys.exit(0)

    if args[0] == "flash":
        print("[flash] Phase 1/2: Writing image to disk...", flush=True)
        if mode == "wait-for-stop":
            line = sys.stdin.readline()
            print("received " + line.strip(), flush=True)
            sys.exit(1)
        if mode == "slow":
            ready, _, _ = select.select([sys.stdin], [], [], 1.0)
            if ready:
                print("stopped by " + sys.stdin.readline().strip(), flush=True)
                sys.exit(1)
        print("1000 bytes (1.0 KB, 1000 B) copied, 1.000 s, 1.0 KB/s", flush=True)
        if mode == "fail":
            print("dd: failed to open " + repr(args[2]) + ": Permission denied")
            sys.exit(1)
        sys.exit(0)
    """
)


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "debian.iso"
    path.write_bytes(b"\0" * 1000)
    return path


@pytest.fixture
def flasher_env(tmp_path):
    """Build an environment pointing the CLI at a scripted flasher."""

    def build(mode: str = "ok", capacity: str = "32000000000") -> dict[str, str]:
        script = tmp_path / "flasher.py"
        script.write_text(FLASHER.format(mode=mode, capacity=capacity))
        command = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"
        return {"IMPRINT_FLASHER_COMMAND": command, "IMPRINT_EVENT_POLL_INTERVAL": "0.05"}

    return build


@pytest.fixture
def interrupt_once():
    """Raise KeyboardInterrupt from the first event poll while flashing."""
    original = SubprocessBackend.poll_events
    state = {"raised": False}

    def poll_events(self, timeout=0.0):
        if self.is_flashing and not state["raised"]:
            state["raised"] = True
            raise KeyboardInterrupt
        return original(self, timeout)

    with patch.object(SubprocessBackend, "poll_events", poll_events):
        yield state


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Imprint" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command_shows_all_settings(self) -> None:
        """CLI config should show all configuration fields."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Backend:" in result.stdout
        assert "Display:" in result.stdout
        assert "Flasher command" in result.stdout
        assert "Use system dd" in result.stdout
        assert "Disable validation" in result.stdout
        assert "Binary units" in result.stdout
        assert "Log level" in result.stdout

    def test_config_json(self) -> None:
        """CLI config --json should output JSON."""
        result = runner.invoke(
            app, ["config", "--json"], env={"IMPRINT_FLASHER_COMMAND": "my-flasher"}
        )
        assert result.exit_code == 0
        parsed = json.loads(result.stdout)
        assert parsed["flasher_command"] == "my-flasher"


class TestCLIDevices:
    """Test CLI devices command."""

    def test_lists_devices(self, flasher_env) -> None:
        """Devices reported by the flasher are listed."""
        result = runner.invoke(app, ["devices"], env=flasher_env())
        assert result.exit_code == 0
        assert "Found 2 device(s)" in result.stdout
        assert "/dev/sdb" in result.stdout
        assert "32.0 GB" in result.stdout

    def test_json(self, flasher_env) -> None:
        """--json keeps capacities exact."""
        env = flasher_env(capacity="18446744073709551617")
        result = runner.invoke(app, ["devices", "--json"], env=env)
        assert result.exit_code == 0
        parsed = json.loads(result.stdout)
        assert parsed[0]["identifier"] == "/dev/sdb"
        assert parsed[0]["capacity_bytes"] == 2**64 + 1

    def test_no_devices(self, flasher_env) -> None:
        """An empty list is reported."""
        result = runner.invoke(app, ["devices"], env=flasher_env(mode="no-devices"))
        assert result.exit_code == 0
        assert "No removable devices found" in result.stdout

    def test_enumeration_error(self, flasher_env) -> None:
        """A failing flasher exits non-zero with its message."""
        result = runner.invoke(app, ["devices"], env=flasher_env(mode="broken"))
        assert result.exit_code == 1
        assert "permission denied" in result.stdout


class TestCLIFlash:
    """Test CLI flash command."""

    def test_flash_help(self) -> None:
        """CLI flash --help should work."""
        result = runner.invoke(app, ["flash", "--help"])
        assert result.exit_code == 0
        assert "flash" in result.stdout.lower()

    def test_flash_success(self, flasher_env, image) -> None:
        """A confirmed flash completes."""
        result = runner.invoke(
            app, ["flash", str(image), "--device", "/dev/sdb", "--yes"], env=flasher_env()
        )
        assert result.exit_code == 0
        assert "WIPE ALL DATA" in result.stdout
        assert "Completed flashing image to disk!" in result.stdout

    def test_flash_interactive(self, flasher_env, image) -> None:
        """Device number and confirmation are read from the terminal."""
        result = runner.invoke(
            app, ["flash", str(image)], input="2\ny\n", env=flasher_env()
        )
        assert result.exit_code == 0
        assert "WD Elements" in result.stdout
        assert "Completed flashing image to disk!" in result.stdout

    def test_flash_prompts_for_image(self, flasher_env, image) -> None:
        """Without an image argument the path is prompted for."""
        result = runner.invoke(
            app, ["flash", "--device", "/dev/sdb", "--yes"], input=f"{image}\n", env=flasher_env()
        )
        assert result.exit_code == 0
        assert "Completed flashing image to disk!" in result.stdout

    def test_flash_declined(self, flasher_env, image) -> None:
        """Declining the confirmation aborts without flashing."""
        result = runner.invoke(
            app, ["flash", str(image), "--device", "/dev/sdb"], input="n\n", env=flasher_env()
        )
        assert result.exit_code == 0
        assert "Aborted" in result.stdout
        assert "Completed" not in result.stdout

    def test_flash_failure(self, flasher_env, image) -> None:
        """A failing flasher reports its last line."""
        result = runner.invoke(
            app,
            ["flash", str(image), "--device", "/dev/sdb", "--yes"],
            env=flasher_env(mode="fail"),
        )
        assert result.exit_code == 1
        assert "Flash failed" in result.stdout
        assert "Permission denied" in result.stdout

    def test_image_too_large(self, flasher_env, image) -> None:
        """An image larger than the device is refused before flashing."""
        result = runner.invoke(
            app,
            ["flash", str(image), "--device", "/dev/sdb", "--yes"],
            env=flasher_env(capacity="999"),
        )
        assert result.exit_code == 1
        assert "larger than" in result.stdout
        assert "WIPE ALL DATA" not in result.stdout

    def test_nothing_armed(self, flasher_env, image) -> None:
        """An armed flash with no image exits non-zero before the warning."""
        with (
            patch.object(FlashWorkflowController, "select_image", return_value=True),
            patch.object(FlashWorkflowController, "request_flash", return_value=True),
        ):
            result = runner.invoke(
                app, ["flash", str(image), "--device", "/dev/sdb", "--yes"], env=flasher_env()
            )
        assert result.exit_code == 1
        assert "nothing selected to flash" in result.stdout
        assert "WIPE ALL DATA" not in result.stdout

    def test_missing_image(self, flasher_env, tmp_path) -> None:
        """A missing image file exits non-zero."""
        result = runner.invoke(
            app,
            ["flash", str(tmp_path / "missing.iso"), "--device", "/dev/sdb", "--yes"],
            env=flasher_env(),
        )
        assert result.exit_code == 1
        assert "Image file not found" in result.stdout

    def test_unknown_device(self, flasher_env, image) -> None:
        """A device the flasher did not report is refused."""
        result = runner.invoke(
            app, ["flash", str(image), "--device", "/dev/sdz", "--yes"], env=flasher_env()
        )
        assert result.exit_code == 1
        assert "Device not found: /dev/sdz" in result.stdout

    def test_no_devices(self, flasher_env, image) -> None:
        """Flashing needs at least one device."""
        result = runner.invoke(
            app, ["flash", str(image), "--yes"], env=flasher_env(mode="no-devices")
        )
        assert result.exit_code == 1
        assert "No removable devices found" in result.stdout


@pytest.mark.skipif(sys.platform == "win32", reason="scripted flasher uses select on stdin")
class TestCLICancel:
    """Test Ctrl-C during a flash."""

    def test_confirmed_cancel_stops_flasher(self, flasher_env, image, interrupt_once) -> None:
        """Confirming the cancel sends stop and exits non-zero."""
        result = runner.invoke(
            app,
            ["flash", str(image), "--device", "/dev/sdb", "--yes"],
            input="y\n",
            env=flasher_env(mode="wait-for-stop"),
        )
        assert interrupt_once["raised"] is True
        assert result.exit_code == 1
        assert "Cancelling will render SanDisk Ultra unusable." in result.stdout
        assert "Cancelled the operation!" in result.stdout
        assert "Completed flashing image to disk!" not in result.stdout

    def test_declined_cancel_keeps_flashing(self, flasher_env, image, interrupt_once) -> None:
        """Declining the cancel sends nothing and the flash completes."""
        result = runner.invoke(
            app,
            ["flash", str(image), "--device", "/dev/sdb", "--yes"],
            input="n\n",
            env=flasher_env(mode="slow"),
        )
        assert interrupt_once["raised"] is True
        assert result.exit_code == 0
        assert "stopped by" not in result.stdout
        assert "Completed flashing image to disk!" in result.stdout


class TestRenderProgress:
    """Test the progress bar renderer."""

    def _snapshot(self, cancel_requested: bool) -> WorkflowSnapshot:
        return WorkflowSnapshot(
            phase=WorkflowPhase.FLASHING,
            confirmation=ConfirmationIntent.NONE,
            device=None,
            image=None,
            progress=Writing(512, 1000, "1.0 MB/s", "Phase 1/2: Writing"),
            devices=(),
            cancel_requested=cancel_requested,
        )

    def test_writing(self) -> None:
        """Writing snapshots update percent, phase and detail."""
        bar = MagicMock()
        _render_progress(bar, 0, self._snapshot(cancel_requested=False), False)
        kwargs = bar.update.call_args.kwargs
        assert kwargs["completed"] == 51
        assert kwargs["description"] == "Phase 1/2: Writing"
        assert kwargs["detail"] == "51% (512 B / 1.0 KB) - 1.0 MB/s"

    def test_cancel_requested(self) -> None:
        """After a confirmed cancel the detail says the flash is still finishing."""
        bar = MagicMock()
        _render_progress(bar, 0, self._snapshot(cancel_requested=True), False)
        assert "cancelling, still finishing..." in bar.update.call_args.kwargs["detail"]


class TestModuleEntryPoint:
    """Test python -m imprint_flash entry point."""

    def test_module_help(self) -> None:
        """python -m imprint_flash --help should work."""
        result = subprocess.run(
            [sys.executable, "-m", "imprint_flash", "--help"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert "Imprint" in result.stdout

    def test_module_version(self) -> None:
        """python -m imprint_flash --version should work."""
        result = subprocess.run(
            [sys.executable, "-m", "imprint_flash", "--version"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert __version__ in result.stdout
