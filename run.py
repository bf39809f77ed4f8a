#!/usr/bin/env python3
"""
RunCode launcher (cross-platform)

Usage:
  python run.py -f script.py                          # run a target script
  python run.py -f script.py --extraParam params.json # with extra parameters
  python run.py -f script.py --user sa --database lab # pass-through arguments
  python run.py -f script.py --dry-run                # validate only
  python run.py --localserver 8080 --root ./site      # serve files locally
  python run.py --detailed-help                       # list sandbox capabilities
"""

import sys
from pathlib import Path

# Allow running from a source checkout without installing.
sys.path.insert(0, str(Path(__file__).resolve().parent))

from runcode.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
