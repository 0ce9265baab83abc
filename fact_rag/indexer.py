#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .embeddings import EmbeddingProvider
from .errors import InputError, PersistenceError, VectorIndexError
from .factstore import FactStore
from .vectorstore import VectorIndex

logger = logging.getLogger(__name__)


class ItemStatus(str, Enum):
    INDEXED = "indexed"
    FACT_STORE_FAILED = "fact_store_failed"
    VECTOR_INSERT_FAILED = "vector_insert_failed"


@dataclass
class ItemOutcome:
    """Итог обработки одного элемента батча.

    fact_id заполнен, если запись в хранилище фактов создана (в том числе
    когда затем упала вставка вектора; такая запись остаётся «сиротой»).
    """
    position: int
    text: str
    status: ItemStatus
    fact_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class IndexReport:
    items: List[ItemOutcome] = field(default_factory=list)

    @property
    def indexed(self) -> int:
        return sum(1 for i in self.items if i.status is ItemStatus.INDEXED)

    @property
    def failed(self) -> int:
        return len(self.items) - self.indexed

    @property
    def orphaned_fact_ids(self) -> List[int]:
        return [i.fact_id for i in self.items if i.status is ItemStatus.VECTOR_INSERT_FAILED]


class RAGIndexer:
    """Индексатор фактов.

    1) Векторизует весь батч одним вызовом провайдера (сбой отменяет всё)
    2) Для каждого элемента создаёт запись в хранилище фактов и получает id
    3) Вставляет вектор в индекс под тем же id

    Сбои шагов 2 и 3 не прерывают батч: элемент помечается в отчёте,
    обработка идёт дальше. Повторных попыток нет.
    """
    def __init__(self, embedder: EmbeddingProvider, fact_store: FactStore, vector_index: VectorIndex) -> None:
        self._embedder = embedder
        self._fact_store = fact_store
        self._vector_index = vector_index

    def index(self, texts: Sequence[str]) -> IndexReport:
        texts = list(texts)
        if not texts:
            raise InputError("Index", "facts must not be empty")
        logger.info("Begin Index: %d item(s)", len(texts))

        # ProviderError здесь уходит наверх: без векторов индексировать нечего
        vectors = self._embedder.embed(texts)

        report = IndexReport()
        for position, (text, vector) in enumerate(zip(texts, vectors)):
            report.items.append(self._index_one(position, text, vector))

        logger.info("End Index: indexed=%d failed=%d", report.indexed, report.failed)
        return report

    def _index_one(self, position: int, text: str, vector: List[float]) -> ItemOutcome:
        # Сначала запись в хранилище фактов: её id становится ключом вектора
        try:
            record = self._fact_store.create(text, vector, visible=True)
        except PersistenceError as exc:
            logger.error("CreateFact failed for item %d: %s", position, exc)
            return ItemOutcome(position, text, ItemStatus.FACT_STORE_FAILED, error=str(exc))

        try:
            self._vector_index.insert(record.id, vector, visible=True)
        except VectorIndexError as exc:
            logger.error("Insert failed for fact %d (item %d): %s", record.id, position, exc)
            return ItemOutcome(position, text, ItemStatus.VECTOR_INSERT_FAILED, fact_id=record.id, error=str(exc))

        return ItemOutcome(position, text, ItemStatus.INDEXED, fact_id=record.id)
