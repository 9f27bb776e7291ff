import random

import pytest
from fastapi.testclient import TestClient

from gemini_pool.config import Settings
from gemini_pool.main import create_app
from gemini_pool.state import PoolState

UPSTREAM = "https://upstream.test"


@pytest.fixture
def settings():
    return Settings({"upstream": {"base_url": UPSTREAM}})


@pytest.fixture
def state():
    return PoolState()


@pytest.fixture
def app(settings, state):
    return create_app(settings, state=state, rng=random.Random(7))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
