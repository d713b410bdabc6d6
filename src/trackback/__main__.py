"""Entry point for TrackBack.

This module provides the command-line entry point for the application.
"""

import sys


def main() -> int:
    """Main entry point for trackback command.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    from trackback.cli import cli_main

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
