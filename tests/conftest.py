import os
import tempfile
from pathlib import Path
from typing import Iterator

import pytest

os.environ.setdefault("KIDPOINTS_SQLITE", str(Path(tempfile.mkdtemp(prefix="kidpoints-")) / "import.db"))


@pytest.fixture
def webapp_module(tmp_path):
    pytest.importorskip("sqlmodel")
    from kidpoints.webapp import application, persistence

    persistence.init_engine(tmp_path / "kidpoints.db")
    application.stores.clear()
    application.auth_manager.reset()
    return application


@pytest.fixture
def client(webapp_module) -> Iterator:
    pytest.importorskip("fastapi")
    from fastapi.testclient import TestClient

    with TestClient(webapp_module.app) as test_client:
        yield test_client
