#!/usr/bin/env python3
"""
Entry point for the raid ingestion service.

Usage:
    python3 scripts/run_ingestion.py            # scheduled: startup run, then every 6 hours
    python3 scripts/run_ingestion.py --once     # single pass, e.g. from cron
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.services.raid_ingestion import main


if __name__ == "__main__":
    raise SystemExit(main())
