"""Allow `python -m recochat` to launch the CLI."""

from recochat.main import run

run()
