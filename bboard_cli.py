"""Entry point for the `bboard` console script.

The backend modules import each other by bare name, so the backend directory
has to be on sys.path before its __main__ module is loaded.

Usage:
    bboard --demo                              # Demo project (no API keys needed)
    bboard <project_id> --date 2026-02-16      # Summarize a project day
    bboard <project_id> --digest stakeholder   # Short stakeholder digest
"""

import asyncio
import importlib.util
import os
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).parent / "bboard" / "backend"


def _load_backend_main():
    spec = importlib.util.spec_from_file_location("bboard_backend_main", str(BACKEND_DIR / "__main__.py"))
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def main() -> None:
    # Nested Claude SDK sessions refuse to start while CLAUDECODE is set
    os.environ.pop("CLAUDECODE", None)
    sys.path.insert(0, str(BACKEND_DIR))

    # .env and the default bboard.db live next to the backend modules
    os.chdir(str(BACKEND_DIR))

    sys.exit(asyncio.run(_load_backend_main().main()))


if __name__ == "__main__":
    main()
