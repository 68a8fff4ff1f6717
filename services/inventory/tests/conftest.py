import os
import tempfile
from pathlib import Path

import pytest

# The repo module builds its engine at import time.
os.environ["INVENTORY_DATABASE_URL"] = f"sqlite:///{Path(tempfile.mkdtemp()) / 'inventory.db'}"

from fastapi.testclient import TestClient  # noqa: E402

from services.inventory import repo  # noqa: E402
from services.inventory.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def stock(client):
    def _set(product_id: str, qty: int, sold: int = 0):
        r = client.put(f"/stock/{product_id}", json={"stock": qty, "sold": sold})
        assert r.status_code == 200, r.text
    return _set
