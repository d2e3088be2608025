"""Entry point for the `orchestrate` console script."""

from __future__ import annotations

import sys

from .cli import run_cli

EXIT_INTERRUPTED = 130


def app_main() -> None:
    try:
        exit_code = run_cli()
    except KeyboardInterrupt:
        # only reachable outside a running mutation; those wait for terraform
        print("\n⛔ Interrupted")
        exit_code = EXIT_INTERRUPTED
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    app_main()
