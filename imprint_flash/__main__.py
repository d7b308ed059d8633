"""Entry point for `python -m imprint_flash`."""

from imprint_flash.cli import app

app(prog_name="imprint")
