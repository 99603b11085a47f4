import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.settings import PatternerSettings  # noqa: E402
from patterner.engine import PatternEngine  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    eng = PatternEngine(PatternerSettings(db_path=str(tmp_path / 'patterner.db')))
    yield eng
    eng.stop_workers()
    eng.storage.close()
