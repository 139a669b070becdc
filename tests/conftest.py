import sys
from pathlib import Path

import pytest

# The modules live at the repository root; make them importable when the
# project is not installed.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import rainbow  # noqa: E402


@pytest.fixture
def small_config():
    return rainbow.RainbowConfig(chain_length=40, progress_interval=2)


@pytest.fixture
def seeds():
    return ["casper4", "hunter2", "letmein", "dragon", "p@ssw0rd", "qwerty123"]
