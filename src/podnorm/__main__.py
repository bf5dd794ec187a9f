"""Allow ``python -m podnorm``."""

from __future__ import annotations

import sys


def _entrypoint() -> int:
    from .cli import app

    # Usage text names the installed script, not __main__.py.
    app(prog_name="podnorm")
    return 0


if __name__ == "__main__":
    sys.exit(_entrypoint())
