"""
Root conftest - makes the flat modules (config, main, core, services...)
importable when running pytest from the repository root.
"""
import sys
from pathlib import Path

_root = Path(__file__).resolve().parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))
