#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from fact_rag.config import load_settings
from fact_rag.errors import RAGError
from fact_rag.logging_setup import configure_logging
from fact_rag.service import RAGService, build_service

logger = logging.getLogger("fact_rag.api")

INTERNAL_ERROR = "internal server error"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Создаёт сервис и готовит хранилища при старте, закрывает клиентов при остановке."""
    settings = load_settings()
    configure_logging(settings.log_level)
    service = build_service(settings)
    service.init_stores()
    app.state.rag = service
    try:
        yield
    finally:
        service.close()


app = FastAPI(title="Fact RAG API", version="1.0.0", lifespan=lifespan)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
    expose_headers=["Content-Length", "X-Request-ID"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Присваивает каждому запросу X-Request-ID (uuid4)."""
    request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


@app.exception_handler(RAGError)
async def rag_error_handler(request: Request, exc: RAGError) -> JSONResponse:
    """Любой сбой ядра наружу уходит как общая внутренняя ошибка, детали только в лог."""
    logger.error(
        "[%s] %s failed: %s",
        getattr(request.state, "request_id", "-"),
        exc.operation,
        exc.message,
    )
    return JSONResponse(status_code=500, content={"detail": INTERNAL_ERROR})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[%s] unhandled error", getattr(request.state, "request_id", "-"))
    return JSONResponse(status_code=500, content={"detail": INTERNAL_ERROR})


def get_service(request: Request) -> RAGService:
    """Dependency: сервис, созданный в lifespan."""
    return request.app.state.rag


class IndexRequest(BaseModel):
    """Тело запроса индексации: непустой список фактов."""
    facts: List[str] = Field(..., min_length=1)

    @field_validator("facts")
    @classmethod
    def _no_blank_facts(cls, facts: List[str]) -> List[str]:
        if any(not f.strip() for f in facts):
            raise ValueError("facts must not contain blank items")
        return facts


class IndexItem(BaseModel):
    position: int
    status: str
    fact_id: Optional[int] = None
    error: Optional[str] = None


class IndexResponse(BaseModel):
    """Ответ индексации: итог по каждому элементу и общее время."""
    status: str
    indexed: int
    failed: int
    took_ms: int
    items: List[IndexItem]


class ChatRequest(BaseModel):
    """Тело запроса чата. stream=True включает «печать» ответа по токенам."""
    query: str = Field(..., min_length=1)
    stream: bool = False

    @field_validator("query")
    @classmethod
    def _not_blank(cls, query: str) -> str:
        if not query.strip():
            raise ValueError("query must not be blank")
        return query


class FactItem(BaseModel):
    id: int
    score: float
    text: str


class ChatResponse(BaseModel):
    """Ответ чата: текст, использованные факты и время выполнения."""
    answer: str
    facts: List[FactItem]
    took_ms: int


router = APIRouter(prefix="/v1/api")


@app.get("/health")
def health() -> Dict[str, str]:
    """Простой health-check эндпоинт для мониторинга/оркестраторов."""
    return {"status": "ok"}


@router.post("/index", response_model=IndexResponse)
def index(req: IndexRequest, request: Request, service: RAGService = Depends(get_service)) -> IndexResponse:
    """Индексирует батч фактов: один вызов эмбеддингов, затем запись и вставка по каждому."""
    logger.info("[%s] Begin API Index", request.state.request_id)
    t0 = time.time()
    report = service.indexer.index(req.facts)
    took_ms = int((time.time() - t0) * 1000)
    return IndexResponse(
        status="ok" if report.failed == 0 else "partial",
        indexed=report.indexed,
        failed=report.failed,
        took_ms=took_ms,
        items=[
            IndexItem(position=i.position, status=i.status.value, fact_id=i.fact_id, error=i.error)
            for i in report.items
        ],
    )


def _paced_body(service: RAGService, answer: str, request_id: str) -> Iterator[str]:
    # Каждый yield StreamingResponse сразу отправляет клиенту
    try:
        for token in service.generator.pace(answer):
            yield token + " "
    except Exception:
        logger.exception("[%s] stream aborted", request_id)
        raise


@router.post("/chat", response_model=ChatResponse)
def chat(req: ChatRequest, request: Request, service: RAGService = Depends(get_service)) -> Any:
    """Отвечает на вопрос по ранее проиндексированным фактам.

    Генерация выполняется до начала ответа: если LLM упала, клиент получает
    500 и ни одного токена.
    """
    logger.info("[%s] Begin API Chat", request.state.request_id)
    t0 = time.time()
    result = service.chat.answer(req.query)

    if req.stream:
        return StreamingResponse(
            _paced_body(service, result.answer, request.state.request_id),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    return ChatResponse(
        answer=result.answer,
        facts=[FactItem(id=f.id, score=f.score, text=f.text) for f in result.facts],
        took_ms=int((time.time() - t0) * 1000),
    )


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=load_settings().port, reload=False)
