from __future__ import annotations

import sys
from pathlib import Path

SRC_DIR = Path(__file__).resolve().parent / "src"


def run() -> int:
    """Run brainshell from a checkout without installing it."""
    if str(SRC_DIR) not in sys.path:
        sys.path.insert(0, str(SRC_DIR))
    from brainshell.main import main as brainshell_main

    return brainshell_main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(run())
