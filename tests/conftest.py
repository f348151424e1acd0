"""Conftest providing sys.path setup for running the tests from a checkout."""

import sys
from pathlib import Path

# Ensure the repo root is on sys.path so `custom_components.hybrid_obd` resolves
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
