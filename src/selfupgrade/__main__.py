"""Module entrypoint for ``python -m selfupgrade``."""

from __future__ import annotations

from selfupgrade.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
