#!/usr/bin/env python3
"""
Run the rota engine CLI against the CSVs in config/

Usage:
  python scripts/run_rota.py schedule --start 2024-03-01 --end 2024-03-31
  python scripts/run_rota.py regenerate --save

Outputs to outputs/ directory.
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.cli import main

if __name__ == "__main__":
    sys.exit(main())
