"""Tests for the HTTP surface."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from semantic_ingestion.main import app
from semantic_ingestion.models.graph import GraphBuildResult
from semantic_ingestion.utils.errors import ParsingError


@pytest.fixture
def ingestion_worker():
    worker = MagicMock()
    worker.process_document = AsyncMock()
    return worker


@pytest.fixture
def graph_service():
    service = MagicMock()
    service.rebuild_graph = AsyncMock(return_value=GraphBuildResult(nodes=2, links=1))
    return service


@pytest.fixture
def client(ingestion_worker, graph_service):
    # No lifespan: state is injected directly
    app.state.ingestion_worker = ingestion_worker
    app.state.graph_service = graph_service
    app.state.graph_worker = MagicMock()
    yield TestClient(app)
    for name in ("ingestion_worker", "graph_service", "graph_worker"):
        delattr(app.state, name)


def test_health(client):
    for path in ("/health", "/api/v1/health"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["service"] == "semantic-ingestion"


def test_process_document_accepted(client, ingestion_worker):
    response = client.post(
        "/api/v1/documents/process",
        json={"documentId": "doc-1", "fileId": "file-1", "fileType": "md", "filename": "notes.md"},
    )

    assert response.status_code == 202
    assert response.json() == {"status": "accepted", "documentId": "doc-1"}
    ingestion_worker.process_document.assert_awaited_once()
    (payload,) = ingestion_worker.process_document.await_args.args
    assert payload.document_id == "doc-1"
    assert payload.file_type == "md"


def test_process_document_failure_stays_in_background(client, ingestion_worker):
    ingestion_worker.process_document.side_effect = ParsingError("Text file is empty.", file_type="txt")

    response = client.post("/api/v1/documents/process", json={"documentId": "doc-1", "fileId": "file-1"})

    assert response.status_code == 202


def test_process_document_validation_error(client):
    response = client.post("/api/v1/documents/process", json={"fileId": "file-1"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_graph_rebuild_accepted(client, graph_service):
    response = client.post("/api/v1/graph/rebuild")

    assert response.status_code == 202
    graph_service.rebuild_graph.assert_awaited_once()
