"""CLI entry point for sukuk.cli module.

Enables execution via: python -m sukuk.cli
"""

from sukuk.cli.sync import main

if __name__ == "__main__":
    raise SystemExit(main())
