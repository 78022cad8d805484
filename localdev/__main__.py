"""Allow ``python -m localdev``."""

from __future__ import annotations

import sys

from localdev.cli import main

if __name__ == "__main__":
    sys.exit(main())
