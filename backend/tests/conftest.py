"""Pytest configuration for the cycling route engine test suite."""

import sys
from pathlib import Path

# Backend modules are flat, so tests import them directly
# (e.g. `import synthesis`).
sys.path.insert(0, str(Path(__file__).parent.parent))
