import os
import pytest
from lulcplatform.config import get_settings

@pytest.fixture(autouse=True)
def _reset_settings_cache(monkeypatch):
    # avoid state leaking between tests (cache and LULC_* from the caller's shell)
    for key in list(os.environ):
        if key.startswith("LULC_") and key != "LULC_EE_PROJECT":
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

def pytest_collection_modifyitems(items):
    for item in items:
        if "integration" in item.keywords and os.environ.get("CI") == "true":
            # tag as slow in CI to allow staging
            item.add_marker(pytest.mark.slow)
