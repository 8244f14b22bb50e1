"""
Pytest configuration and fixtures.
Adds the repo root to the Python path so tests can import lp_rebalancer.
"""

import sys
from pathlib import Path

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))
