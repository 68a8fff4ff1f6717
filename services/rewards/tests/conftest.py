import os
import tempfile
from pathlib import Path

import pytest

# The repo module builds its engine at import time.
os.environ["REWARDS_DATABASE_URL"] = f"sqlite:///{Path(tempfile.mkdtemp()) / 'rewards.db'}"

from fastapi.testclient import TestClient  # noqa: E402

from services.rewards import repo  # noqa: E402
from services.rewards.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def account(client):
    def _open(buyer_id: str, points: int = 0, balance_cents: int = 0):
        r = client.put(f"/accounts/{buyer_id}", json={"points": points, "balance_cents": balance_cents})
        assert r.status_code == 200, r.text
    return _open
