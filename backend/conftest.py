"""Shared pytest fixtures: every test starts with empty stores and caches."""

import pytest

import routes
import sos
from data_fetchers import proxy_cache
from report_store import report_store


@pytest.fixture(autouse=True)
def _reset_state():
    report_store.clear()
    proxy_cache.clear()
    routes._rate_store.clear()
    sos._SOS_CACHE.clear()
    yield
    report_store.clear()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    with TestClient(routes.app) as c:
        yield c
