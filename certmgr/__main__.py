"""Allow ``python -m certmgr``."""

from __future__ import annotations

from certmgr.cli.main import main

if __name__ == "__main__":
    main()
