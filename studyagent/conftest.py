# studyagent/conftest.py
import pytest


@pytest.fixture(scope="function", autouse=True)
def sqlite_db():
    """
    Fresh in-memory SQLite database per test, with default plans seeded.

    Uses a single shared connection (StaticPool) so every session in the
    test sees the same database.
    """
    from studyagent.core.database import init_engine, create_all_tables, dispose_engine
    from studyagent.features.plans.service import seed_plans

    init_engine("sqlite://")
    create_all_tables()
    seed_plans()
    yield
    dispose_engine()


@pytest.fixture
def fake_oracle():
    from studyagent.tests.mocks import FakeOracle
    return FakeOracle()


@pytest.fixture
def app(fake_oracle):
    from studyagent.main import create_app
    return create_app(oracle_factory=lambda: fake_oracle)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client
