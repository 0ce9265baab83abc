#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError


@dataclass
class EmbeddingConfig:
    """Параметры провайдера эмбеддингов.

    - provider: "huggingface" (локальная модель через LlamaIndex) или "openai"
    - model_name: имя модели эмбеддингов (None: модель по умолчанию для провайдера)
    - dimension: размерность векторов D (должна совпадать с коллекцией)
    - embed_batch_size: размер батча для локальной модели
    - base_url, api_key: параметры OpenAI-совместимого API (для provider="openai")
    """
    provider: str = "huggingface"
    model_name: Optional[str] = None
    dimension: int = 384
    embed_batch_size: int = 32
    base_url: Optional[str] = None
    api_key: Optional[str] = None


@dataclass
class VectorStoreConfig:
    """Параметры векторного индекса.

    - backend: "weaviate" или "faiss"
    - collection: имя коллекции/класса
    - dimension: размерность векторов D
    - metric: "ip" (скалярное произведение) или "cosine"
    - use_embedded: использовать ли встроенный (embedded) Weaviate
    - weaviate_url: URL удалённого Weaviate (если используется)
    - weaviate_api_key: API-ключ для удалённого Weaviate (опционально)
    - weaviate_grpc_port: gRPC-порт удалённого Weaviate
    - faiss_path: файл для сохранения FAISS-индекса (None: только в памяти)
    """
    backend: str = "weaviate"
    collection: str = "Facts"
    dimension: int = 384
    metric: str = "ip"
    use_embedded: bool = True
    weaviate_url: Optional[str] = None
    weaviate_api_key: Optional[str] = None
    weaviate_grpc_port: int = 50051
    faiss_path: Optional[str] = None


@dataclass
class FactStoreConfig:
    """Параметры хранилища фактов (SQLAlchemy).

    - database_url: строка подключения SQLAlchemy
    - echo: логировать ли SQL-запросы
    """
    database_url: str = "sqlite:///./data/facts.db"
    echo: bool = False


@dataclass
class LLMConfig:
    """Параметры языковой модели (OpenAI-совместимый API).

    - base_url: базовый URL сервиса LLM
    - api_key: ключ доступа
    - model_name: имя модели
    - temperature, top_p, max_tokens: параметры генерации
    - system_prompt: системный промпт (пустой: запрос из одного user-сообщения)
    - enable_thinking: значение спец.параметра enable_thinking (None: не передавать)
    """
    base_url: str = "http://localhost:8080/v1"
    api_key: str = "test"
    model_name: str = "gpt-4o-mini"
    temperature: float = 0.3
    top_p: float = 0.9
    max_tokens: int = 800
    system_prompt: str = ""
    enable_thinking: Optional[bool] = None


@dataclass
class RetrievalConfig:
    """Параметры извлечения.

    - top_k: сколько ближайших соседей доставать из индекса
    - score_threshold: минимальный скор кандидата; всё, что ниже, отбрасывается
    """
    top_k: int = 5
    score_threshold: float = 0.0


@dataclass
class StreamingConfig:
    """Параметры потоковой выдачи ответа.

    - token_delay: пауза после каждого токена, секунды
    """
    token_delay: float = 0.05


@dataclass
class Settings:
    """Полная конфигурация сервиса."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    fact_store: FactStoreConfig = field(default_factory=FactStoreConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    port: int = 8000
    log_level: str = "INFO"


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError("load_settings", f"{name} must be an integer, got {raw!r}") from exc


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError("load_settings", f"{name} must be a number, got {raw!r}") from exc


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_optional_bool(env: Mapping[str, str], name: str) -> Optional[bool]:
    if env.get(name) in (None, ""):
        return None
    return _get_bool(env, name, False)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Собирает Settings из переменных окружения.

    Если env не передан, сначала подгружается .env (python-dotenv), затем
    читается os.environ. Некорректные числовые значения дают ConfigError.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    dimension = _get_int(env, "RAG_EMBEDDING_DIM", EmbeddingConfig.dimension)
    weaviate_url = env.get("WEAVIATE_URL") or None
    openai_base_url = env.get("OPENAI_BASE_URL") or LLMConfig.base_url
    openai_api_key = env.get("OPENAI_API_KEY") or LLMConfig.api_key

    metric = env.get("RAG_METRIC", VectorStoreConfig.metric).lower()
    if metric not in ("ip", "cosine"):
        raise ConfigError("load_settings", f"RAG_METRIC must be 'ip' or 'cosine', got {metric!r}")
    backend = env.get("RAG_VECTOR_BACKEND", VectorStoreConfig.backend).lower()
    if backend not in ("weaviate", "faiss"):
        raise ConfigError("load_settings", f"RAG_VECTOR_BACKEND must be 'weaviate' or 'faiss', got {backend!r}")

    return Settings(
        embedding=EmbeddingConfig(
            provider=env.get("RAG_EMBEDDING_PROVIDER", EmbeddingConfig.provider).lower(),
            model_name=env.get("RAG_EMBEDDING_MODEL") or None,
            dimension=dimension,
            embed_batch_size=_get_int(env, "RAG_EMBED_BATCH_SIZE", EmbeddingConfig.embed_batch_size),
            base_url=openai_base_url,
            api_key=openai_api_key,
        ),
        vector_store=VectorStoreConfig(
            backend=backend,
            collection=env.get("RAG_COLLECTION", VectorStoreConfig.collection),
            dimension=dimension,
            metric=metric,
            use_embedded=weaviate_url is None,
            weaviate_url=weaviate_url,
            weaviate_api_key=env.get("WEAVIATE_API_KEY") or None,
            weaviate_grpc_port=_get_int(env, "WEAVIATE_GRPC_PORT", VectorStoreConfig.weaviate_grpc_port),
            faiss_path=env.get("RAG_FAISS_PATH") or None,
        ),
        fact_store=FactStoreConfig(
            database_url=env.get("RAG_DATABASE_URL", FactStoreConfig.database_url),
            echo=_get_bool(env, "RAG_DATABASE_ECHO", FactStoreConfig.echo),
        ),
        llm=LLMConfig(
            base_url=openai_base_url,
            api_key=openai_api_key,
            model_name=env.get("RAG_LLM_MODEL", LLMConfig.model_name),
            temperature=_get_float(env, "RAG_LLM_TEMPERATURE", LLMConfig.temperature),
            top_p=_get_float(env, "RAG_LLM_TOP_P", LLMConfig.top_p),
            max_tokens=_get_int(env, "RAG_LLM_MAX_TOKENS", LLMConfig.max_tokens),
            system_prompt=env.get("RAG_LLM_SYSTEM_PROMPT", LLMConfig.system_prompt),
            enable_thinking=_get_optional_bool(env, "RAG_LLM_ENABLE_THINKING"),
        ),
        retrieval=RetrievalConfig(
            top_k=_get_int(env, "RAG_TOP_K", RetrievalConfig.top_k),
            score_threshold=_get_float(env, "RAG_SCORE_THRESHOLD", RetrievalConfig.score_threshold),
        ),
        streaming=StreamingConfig(
            token_delay=_get_int(env, "RAG_STREAM_DELAY_MS", 50) / 1000.0,
        ),
        port=_get_int(env, "PORT", Settings.port),
        log_level=env.get("RAG_LOG_LEVEL", Settings.log_level).upper(),
    )
