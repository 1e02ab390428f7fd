"""Module entrypoint for `python -m tmspyramid`."""

from __future__ import annotations

from tmspyramid.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
