"""Thin CLI wrapper for imprint_flash.

This module provides the command-line interface using Typer.
All workflow logic is delegated to the flash controller; this module
only renders snapshots and forwards the user's answers.
"""

import json
from collections.abc import Callable
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn

from imprint_flash import __version__
from imprint_flash.config import Settings, get_settings, print_settings_json
from imprint_flash.flash.controller import (
    FlashWorkflowController,
    ValidationError,
    WorkflowSnapshot,
)
from imprint_flash.flash.device import Device, DeviceNotFoundError
from imprint_flash.flash.image import ImageError
from imprint_flash.flash.process import SubprocessBackend
from imprint_flash.flash.progress import Done, Error, Writing, describe_progress
from imprint_flash.flash.sizes import format_bytes
from imprint_flash.log import configure_logging
from imprint_flash.types import WorkflowPhase

app = typer.Typer(
    name="imprint",
    help="Imprint - flash disk images (.iso, .img) to removable drives",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"imprint version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Imprint - flash disk images (.iso, .img) to removable drives."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Backend:[/bold]")
    console.print(f"  Flasher command:     {settings.flasher_command}")
    console.print(f"  Use system dd:       {settings.use_system_dd}")
    console.print(f"  Disable validation:  {settings.disable_validation}")
    console.print()
    console.print("[bold]Display:[/bold]")
    console.print(f"  Binary units:        {settings.binary_units}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Event poll interval: {settings.event_poll_interval}s")


def _pump_until(
    controller: FlashWorkflowController,
    backend: SubprocessBackend,
    settings: Settings,
    done: Callable[[WorkflowSnapshot], bool],
) -> WorkflowSnapshot:
    """Apply backend events until `done` holds for the snapshot."""
    while not done(controller.snapshot):
        controller.handle_events(backend.poll_events(settings.event_poll_interval))
    return controller.snapshot


def _exit_with_notice(snapshot: WorkflowSnapshot) -> None:
    if snapshot.notice:
        message = snapshot.notice.removeprefix("Error: ")
        console.print(f"[red]{message}[/red]")
        raise typer.Exit(code=1)


def _load_devices(
    controller: FlashWorkflowController,
    backend: SubprocessBackend,
    settings: Settings,
) -> tuple[Device, ...]:
    """Refresh the device list and wait for the result."""
    generation = controller.catalog.generation
    if not controller.refresh_devices():
        _exit_with_notice(controller.snapshot)

    snapshot = _pump_until(
        controller,
        backend,
        settings,
        lambda s: controller.catalog.generation > generation or s.notice is not None,
    )
    _exit_with_notice(snapshot)
    return snapshot.devices


@app.command()
def devices(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List removable devices reported by the flasher."""
    settings = get_settings()
    backend = SubprocessBackend.from_settings(settings)
    controller = FlashWorkflowController(backend)

    found = _load_devices(controller, backend, settings)

    if json_output:
        output = [
            {
                "identifier": d.identifier,
                "label": d.label,
                "capacity_bytes": d.capacity_bytes,
            }
            for d in found
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not found:
        console.print("[yellow]No removable devices found[/yellow]")
        return

    console.print(f"[bold]Found {len(found)} device(s):[/bold]")
    console.print()
    for d in found:
        console.print(f"  [green]{d.identifier}[/green]")
        console.print(f"    Label: {d.label}")
        console.print(
            f"    Capacity: {format_bytes(d.capacity_bytes, settings.binary_units)} "
            f"({d.capacity_bytes} bytes)"
        )


def _prompt_for_path() -> str | None:
    """Ask for an image path on the terminal; empty means cancelled."""
    answer = typer.prompt(
        "Path to disk image (.iso, .img, etc)", default="", show_default=False
    )
    return answer.strip() or None


def _choose_device(found: tuple[Device, ...], binary: bool) -> str:
    console.print("[bold]Select the device to flash to:[/bold]")
    for index, d in enumerate(found, start=1):
        console.print(f"  {index}. {d.describe(binary)}")
    choice = typer.prompt("Device number", type=int)
    if not 1 <= choice <= len(found):
        console.print(f"[red]Invalid device number: {choice}[/red]")
        raise typer.Exit(code=1)
    return found[choice - 1].identifier


def _render_progress(
    bar: Progress, task: TaskID, snapshot: WorkflowSnapshot, binary: bool
) -> None:
    progress = snapshot.progress
    if isinstance(progress, Writing):
        detail = describe_progress(progress, binary)
        if snapshot.cancel_requested:
            detail = f"{detail} - cancelling, still finishing..."
        bar.update(
            task,
            completed=snapshot.percent,
            description=progress.phase_label or "Writing image to disk...",
            detail=detail,
        )
    elif isinstance(progress, Done):
        bar.update(task, completed=100, description="Done", detail="")


def _ask_cancel(controller: FlashWorkflowController, bar: Progress) -> None:
    if not controller.request_cancel():
        return
    device = controller.snapshot.device
    label = device.label if device else "the device"
    bar.stop()
    console.print(f"[bold red]Cancelling will render {label} unusable.[/bold red]")
    console.print("You must reformat the device to use it again.")
    if typer.confirm("Do you want to cancel flashing?", default=False):
        controller.confirm_pending()
    else:
        controller.decline_pending()
    bar.start()


@app.command()
def flash(
    image: Annotated[
        str | None,
        typer.Argument(help="Path to disk image (prompted for if omitted)"),
    ] = None,
    device: Annotated[
        str | None,
        typer.Option("--device", "-d", help="Device identifier (e.g., /dev/sdX)"),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip the confirmation prompt"),
    ] = False,
) -> None:
    """Flash a disk image to a removable drive.

    The device list comes from the flasher; only devices it reports can
    be selected. Flashing requires a confirmation unless --yes is given.
    Press Ctrl-C during the write to cancel (with confirmation).
    """
    settings = get_settings()
    binary = settings.binary_units
    backend = SubprocessBackend.from_settings(settings, prompt=_prompt_for_path)
    controller = FlashWorkflowController(backend)

    found = _load_devices(controller, backend, settings)
    if not found:
        console.print("[yellow]No removable devices found[/yellow]")
        raise typer.Exit(code=1)

    # Step 1: image
    try:
        if image is not None:
            controller.select_image(image)
        else:
            controller.prompt_for_image()
            controller.handle_events(backend.poll_events())
    except ImageError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None
    _exit_with_notice(controller.snapshot)

    # Step 2: device
    if device is None:
        device = _choose_device(found, binary)
    try:
        controller.select_device(device)
    except DeviceNotFoundError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    # Step 3: arm and confirm
    try:
        controller.request_flash()
    except ValidationError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(code=1) from None

    snapshot = controller.snapshot
    if snapshot.device is None or snapshot.image is None:
        console.print("[red]Error: nothing selected to flash[/red]")
        raise typer.Exit(code=1)
    console.print(
        f"[bold red]WARNING:[/bold red] This operation will WIPE ALL DATA from: "
        f"{snapshot.device.label}"
    )
    console.print(
        f"  Image: {snapshot.image.name} ({format_bytes(snapshot.image.size_bytes, binary)})"
    )
    if not yes and not typer.confirm("Do you want to continue?", default=False):
        controller.decline_pending()
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(code=0)
    controller.confirm_pending()

    # Step 4: progress
    with Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.fields[detail]}"),
        console=console,
    ) as bar:
        task = bar.add_task("Writing image to disk...", total=100, detail="")
        unsubscribe = controller.subscribe(
            lambda s: _render_progress(bar, task, s, binary)
        )
        while controller.phase != WorkflowPhase.TERMINAL:
            try:
                controller.handle_events(
                    backend.poll_events(settings.event_poll_interval)
                )
            except KeyboardInterrupt:
                _ask_cancel(controller, bar)
        unsubscribe()

    outcome = controller.snapshot.progress
    controller.dismiss()

    if isinstance(outcome, Error):
        console.print("[red]✗ Flash failed[/red]")
        console.print(f"  Error: {outcome.message}")
        raise typer.Exit(code=1)

    console.print("[green]✓ Completed flashing image to disk![/green]")
    console.print("  You may now remove the external drive safely.")


if __name__ == "__main__":
    app()
