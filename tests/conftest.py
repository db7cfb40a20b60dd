import sys
from pathlib import Path

import pytest

# Ensure the `geogrid` package is importable when running pytest from a checkout.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from geogrid.core import config  # noqa: E402


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch):
    # load_dotenv must not pull a developer's .env into the tests.
    monkeypatch.setattr(config, "load_dotenv", lambda: None)
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()
