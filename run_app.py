"""Local runner for the PPG vitals service with src/ layout.

Usage: python run_app.py [serve|replay ...]
"""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> None:
    # Ensure src/ is on sys.path so `import ppgvitals` resolves
    root = Path(__file__).resolve().parent
    src = root / "src"
    if src.exists():
        sys.path.insert(0, str(src))
    from ppgvitals.cli import main as cli_main  # type: ignore

    raise SystemExit(cli_main(sys.argv[1:] or ["serve"]))


if __name__ == "__main__":
    main()
