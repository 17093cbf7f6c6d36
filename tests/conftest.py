"""Pytest configuration for path setup.

The test suite imports the ``market_board`` package from
``market_board/src`` and the helpers from ``tests/helpers``.  When the
package is not installed, this file puts both the project root and the
source directory on ``sys.path`` so collection works however pytest is
invoked.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]

for path in (ROOT, ROOT / "market_board" / "src"):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
