import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"

# src/ for the package, the repo root for tests.helpers
for path in (SRC_DIR, REPO_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture
def dataset_factory(tmp_path):
    """Build `<tmp_path>/dataset/<split>/...` from {stem: class ids} mappings."""
    from tests.helpers.datasets import build_split

    root = tmp_path / "dataset"

    def make(split="train", labels=None, colors=None):
        return build_split(root, split, labels or {}, colors)

    return make
