#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Провайдеры эмбеддингов: текст -> вектор фиксированной размерности.

Контракт общий для всех реализаций: на вход упорядоченный батч строк, на выход
батч векторов той же длины и в том же порядке. Любой сбой провайдера отменяет
весь батч (ProviderError), частичных результатов не бывает.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from openai import OpenAI, OpenAIError

from .config import EmbeddingConfig
from .errors import ConfigError, InputError, ProviderError

logger = logging.getLogger(__name__)

Vector = List[float]

DEFAULT_HUGGINGFACE_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"


class EmbeddingProvider(ABC):
    """Интерфейс провайдера эмбеддингов."""

    name: str = "embedding"

    def embed(self, texts: Sequence[str]) -> List[Vector]:
        """Векторизует батч строк одним вызовом провайдера."""
        if not texts:
            raise InputError("Embed", "empty batch")
        try:
            vectors = self._embed_batch(list(texts))
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("Embed failed (%s): %s", self.name, exc)
            raise ProviderError("Embed", str(exc)) from exc
        if len(vectors) != len(texts):
            raise ProviderError("Embed", f"expected {len(texts)} vectors, got {len(vectors)}")
        return vectors

    @abstractmethod
    def _embed_batch(self, texts: List[str]) -> List[Vector]:
        ...


class HuggingFaceEmbedder(EmbeddingProvider):
    """Локальная модель HuggingFace через LlamaIndex HuggingFaceEmbedding."""

    name = "huggingface"

    def __init__(self, model_name: str, embed_batch_size: int = 32, model=None) -> None:
        if model is None:
            from llama_index.embeddings.huggingface import HuggingFaceEmbedding

            model = HuggingFaceEmbedding(model_name=model_name, embed_batch_size=embed_batch_size)
        self._model = model

    def _embed_batch(self, texts: List[str]) -> List[Vector]:
        return [list(v) for v in self._model.get_text_embedding_batch(texts)]


class OpenAIEmbedder(EmbeddingProvider):
    """OpenAI-совместимый эндпоинт /embeddings."""

    name = "openai"

    def __init__(
        self,
        model_name: str = DEFAULT_OPENAI_MODEL,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        dimension: Optional[int] = None,
        client: Optional[OpenAI] = None,
    ) -> None:
        self._client = client or OpenAI(base_url=base_url, api_key=api_key)
        self._model = model_name
        self._dimension = dimension

    def _embed_batch(self, texts: List[str]) -> List[Vector]:
        kwargs = {"model": self._model, "input": texts}
        if self._dimension:
            kwargs["dimensions"] = self._dimension
        try:
            resp = self._client.embeddings.create(**kwargs)
        except OpenAIError as exc:
            logger.error("CreateEmbeddings failed: %s", exc)
            raise ProviderError("CreateEmbeddings", str(exc)) from exc
        # Порядок восстанавливаем по полю index, а не по позиции в ответе
        data = sorted(resp.data, key=lambda d: d.index)
        return [list(d.embedding) for d in data]


def make_embedder(cfg: EmbeddingConfig) -> EmbeddingProvider:
    """Создаёт провайдера эмбеддингов согласно конфигурации.

    Если модель не задана, берётся модель по умолчанию выбранного провайдера.
    """
    if cfg.provider == "huggingface":
        return HuggingFaceEmbedder(cfg.model_name or DEFAULT_HUGGINGFACE_MODEL, embed_batch_size=cfg.embed_batch_size)
    if cfg.provider == "openai":
        return OpenAIEmbedder(
            model_name=cfg.model_name or DEFAULT_OPENAI_MODEL,
            base_url=cfg.base_url,
            api_key=cfg.api_key,
            dimension=cfg.dimension,
        )
    raise ConfigError("make_embedder", f"unknown embedding provider: {cfg.provider!r}")
