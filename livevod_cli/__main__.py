"""
Console entry point for `livevod` and `python -m livevod_cli`.

Typer already turns usage errors, `typer.Exit` and Ctrl-C into exit codes; what
reaches this level is an error a command did not handle itself.
"""

import logging
import sys

from rich.console import Console

from livevod_cli.cli.app import app
from livevod_cli.cli.formatters import format_error_with_suggestions
from livevod_cli.exceptions import LiveVodError

log = logging.getLogger(__name__)


def main() -> None:
    console = Console(stderr=True)
    try:
        app(prog_name="livevod")
    except LiveVodError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(1)
    except Exception as e:
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
