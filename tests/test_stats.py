"""
Tests for the GET /stats endpoint.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLogSource, dense_history
from message_explorer.main import app, get_upstream
from message_explorer.storage import Base, engine


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides[get_upstream] = lambda: FakeLogSource(dense_history(25))

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


class TestStats:

    def test_empty_database_stats(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        assert response.json() == {"total_messages": 0, "first_block": None, "last_block": None}

    def test_stats_after_first_page(self, client):
        client.get("/messages")

        data = client.get("/stats").json()

        assert data["total_messages"] == 10
        assert data["first_block"] == 990_500
        assert data["last_block"] == 999_500

    def test_stats_grow_with_pages(self, client):
        first = client.get("/messages").json()["data"]
        client.get("/messages", params={"id": first["cursor"]})

        assert client.get("/stats").json()["total_messages"] == 20

    def test_stats_in_block_range(self, client):
        client.get("/messages")

        data = client.get("/stats", params={"fromBlock": 995_000, "toBlock": 998_000}).json()

        assert data == {"total_messages": 3, "first_block": 995_500, "last_block": 997_500}

    def test_stats_response_includes_request_id_header(self, client):
        response = client.get("/stats")

        assert "x-request-id" in response.headers
