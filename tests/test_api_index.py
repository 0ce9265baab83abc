"""
Тесты эндпоинта /v1/api/index FastAPI-приложения.

Сценарии:
- Успешная индексация (заглушки вместо эмбеддингов/индекса/хранилища)
- Частичный сбой: запись одного факта не сохранилась, остальные проиндексированы
- Ошибка провайдера эмбеддингов -> HTTP 500 с общим сообщением
- Ошибки валидации -> HTTP 422 с конкретным сообщением

Запуск тестов:
  pytest -q tests/test_api_index.py

Ручная проверка эндпоинта (после запуска uvicorn app.main:app):
  curl -X POST http://localhost:8000/v1/api/index \
       -H 'Content-Type: application/json' \
       -d '{"facts": ["Paris is the capital of France"]}'
"""

import pytest
from fastapi.testclient import TestClient

from app.main import app, get_service
from fact_rag.service import RAGService

from conftest import DummyEmbedder, DummyFactStore, DummyLLM, DummyVectorIndex, make_settings


@pytest.fixture
def client(service: RAGService):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_index_happy_path(client: TestClient, fact_store: DummyFactStore, vector_index: DummyVectorIndex) -> None:
    resp = client.post("/v1/api/index", json={"facts": ["Paris is the capital of France", "Rome is in Italy"]})

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["status"] == "ok"
    assert data["indexed"] == 2 and data["failed"] == 0
    assert isinstance(data["took_ms"], int) and data["took_ms"] >= 0
    ids = [item["fact_id"] for item in data["items"]]
    assert sorted(ids) == sorted(fact_store.rows) == sorted(vector_index.entries)
    assert resp.headers.get("X-Request-ID")


def test_index_partial_failure_reports_each_item() -> None:
    store = DummyFactStore(fail_texts={"broken"})
    service = RAGService(make_settings(), DummyEmbedder(), store, DummyVectorIndex(), DummyLLM())
    app.dependency_overrides[get_service] = lambda: service
    try:
        resp = TestClient(app).post("/v1/api/index", json={"facts": ["first", "broken", "third"]})
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["status"] == "partial"
    assert [i["status"] for i in data["items"]] == ["indexed", "fact_store_failed", "indexed"]
    assert data["items"][1]["fact_id"] is None


def test_index_provider_error_translates_to_500() -> None:
    service = RAGService(make_settings(), DummyEmbedder(fail=True), DummyFactStore(), DummyVectorIndex(), DummyLLM())
    app.dependency_overrides[get_service] = lambda: service
    try:
        resp = TestClient(app).post("/v1/api/index", json={"facts": ["anything"]})
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 500
    assert resp.json() == {"detail": "internal server error"}


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"facts": []},
        {"facts": ["ok", "   "]},
        {"facts": "not a list"},
    ],
)
def test_index_validation_errors(client: TestClient, payload) -> None:
    resp = client.post("/v1/api/index", json=payload)
    assert resp.status_code == 422
    assert "detail" in resp.json()


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
