"""Console-script entry point; reports a missing CLI dependency by name."""

import sys


def main():
    try:
        from .cli import main as cli_main
    except ImportError as exc:
        missing = exc.name or "click"
        print(
            f"Error: the gitcdn CLI needs {missing!r}, which is not installed.\n"
            "Install the CLI extra with:  pip install 'gitcdn[cli]'",
            file=sys.stderr,
        )
        raise SystemExit(1)
    cli_main()
