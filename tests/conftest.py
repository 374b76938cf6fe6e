import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _fresh_query_store(monkeypatch):
    """Give every test an empty query slot and no leftover dependency overrides."""
    from src.deepthink.api.main import app
    from src.deepthink.infrastructure import query_store

    monkeypatch.setattr(query_store, "_store", None, raising=False)
    app.dependency_overrides.clear()
    yield
    app.dependency_overrides.clear()
