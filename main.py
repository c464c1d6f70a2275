#!/usr/bin/env python3
"""balquota source entrypoint.

Kept for convenience when running from a checkout:
- `python3 main.py --input quota.json`
- `python3 main.py fetch --key sk-1234`

The packaged entrypoint is:
- `balquota balance --key sk-1234`
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(REPO_ROOT / "src"))

from balquota.cli import cli  # noqa: E402


def main() -> None:
    raise SystemExit(cli(sys.argv[1:], prog="python3 main.py"))


if __name__ == "__main__":
    main()
