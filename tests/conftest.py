import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_stagehand_env(monkeypatch):
    """Keep ``STAGEHAND_*`` variables from the outer shell out of tests."""
    for key in list(os.environ):
        if key.startswith("STAGEHAND_"):
            monkeypatch.delenv(key, raising=False)
