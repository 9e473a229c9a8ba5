import sys
from pathlib import Path

# Ensure the src directory is on the Python path for imports, and the tests
# directory for the shared engine fixtures
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / 'src'
TESTS = ROOT / 'tests'
for path in (SRC, TESTS):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))
