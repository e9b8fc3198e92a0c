"""
dealguard.__main__

Entrypoint for `python -m dealguard`.
"""

from __future__ import annotations

import sys

from dealguard.cli import main

if __name__ == "__main__":
    sys.exit(main())
