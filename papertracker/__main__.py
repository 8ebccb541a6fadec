"""Entry point for running papertracker as a module or installed script.

Usage:
    papertracker / python -m papertracker         → HTTP endpoint (uvicorn)
    papertracker <command> ... / python -m papertracker <command> ... → CLI
"""

import sys

import uvicorn


def run() -> None:
    """Entry point: no args → HTTP endpoint, else → CLI."""
    if len(sys.argv) == 1:
        uvicorn.run("papertracker.api.app:app", host="127.0.0.1", port=8000)
    else:
        from papertracker.cli import run_cli
        run_cli()


if __name__ == "__main__":
    run()
