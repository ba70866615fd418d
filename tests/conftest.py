import pytest
from fastapi.testclient import TestClient

from attemptlock.api import create_app
from attemptlock.config import RuleConfig

SUPERVISOR = 2
EDITOR = 3


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("ATTEMPTLOCK_SUPERVISORS", str(SUPERVISOR))
    monkeypatch.setenv("ATTEMPTLOCK_EDITORS", str(EDITOR))
    return create_app(
        rule_config=RuleConfig(component="oneconnection", default_enabled=True),
        db_path=str(tmp_path / "attemptlock.db"),
        trust_proxy=True,
    )


@pytest.fixture
def client(app):
    return TestClient(app)
