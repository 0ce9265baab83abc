#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Сборка пайплайна из конфигурации: долгоживущие клиенты создаются один раз."""

import logging
from typing import Sequence

from llama_index.core.llms import LLM

from .config import Settings
from .embeddings import EmbeddingProvider, make_embedder
from .engine import AnswerGenerator, ChatPipeline, Retriever
from .factstore import FactStore
from .indexer import RAGIndexer
from .llm import OpenAIChatLLM
from .vectorstore import VectorIndex, make_vector_index

logger = logging.getLogger(__name__)


class RAGService:
    """Точка входа для HTTP-слоя: Index и Chat поверх общих клиентов хранилищ.

    Клиенты (индекс, хранилище фактов, провайдеры) разделяются всеми
    одновременными запросами; сам сервис состояния между запросами не держит.
    """
    def __init__(
        self,
        settings: Settings,
        embedder: EmbeddingProvider,
        fact_store: FactStore,
        vector_index: VectorIndex,
        llm: LLM,
    ) -> None:
        self.settings = settings
        self.fact_store = fact_store
        self.vector_index = vector_index
        self.indexer = RAGIndexer(embedder, fact_store, vector_index)
        self.generator = AnswerGenerator(llm, settings.streaming)
        self.chat = ChatPipeline(
            Retriever(embedder, vector_index, fact_store, settings.retrieval),
            self.generator,
        )

    def init_stores(self) -> None:
        """Создаёт схему хранилища фактов и коллекцию векторного индекса."""
        self.fact_store.init_schema()
        self.vector_index.init_collection()
        logger.info(
            "Stores ready: backend=%s collection=%s dim=%d",
            self.settings.vector_store.backend,
            self.settings.vector_store.collection,
            self.settings.vector_store.dimension,
        )

    def delete_facts(self, ids: Sequence[int]) -> int:
        """Убирает факты из выдачи: векторы удаляются, записи помечаются deleted_at.

        Подходит и для записей-«сирот» из IndexReport.orphaned_fact_ids.
        """
        ids = list(ids)
        self.vector_index.delete(ids)
        deleted = self.fact_store.soft_delete(ids)
        logger.info("Deleted %d fact(s) of %d requested", deleted, len(ids))
        return deleted

    def close(self) -> None:
        self.vector_index.close()


def build_service(settings: Settings) -> RAGService:
    """Создаёт RAGService с адаптерами, выбранными по конфигурации."""
    return RAGService(
        settings=settings,
        embedder=make_embedder(settings.embedding),
        fact_store=FactStore(settings.fact_store),
        vector_index=make_vector_index(settings.vector_store),
        llm=OpenAIChatLLM.from_config(settings.llm),
    )
