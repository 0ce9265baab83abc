"""
Общие заглушки для тестов: провайдер эмбеддингов, векторный индекс,
хранилище фактов и LLM без внешних сервисов.
"""

from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Set

import pytest

from fact_rag.config import FactStoreConfig, RetrievalConfig, Settings, StreamingConfig, VectorStoreConfig
from fact_rag.embeddings import EmbeddingProvider
from fact_rag.errors import PersistenceError, VectorIndexError
from fact_rag.factstore import FactRecord, FactStore
from fact_rag.service import RAGService
from fact_rag.vectorstore import SearchHit, VectorIndex

DIM = 4


class DummyEmbedder(EmbeddingProvider):
    """Детерминированные векторы: заранее заданные или по длине текста."""

    name = "dummy"

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, fail: bool = False) -> None:
        self.vectors = vectors or {}
        self.fail = fail
        self.calls: List[List[str]] = []

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        return [self.vectors.get(t, [float(len(t)), 1.0, 0.0, 0.0]) for t in texts]


class DummyVectorIndex(VectorIndex):
    """Индекс в памяти со скалярным произведением; умеет падать на заданных id."""

    def __init__(self, fail_ids: Optional[Set[int]] = None, fail_search: bool = False) -> None:
        super().__init__(VectorStoreConfig(backend="dummy", dimension=DIM))
        self.entries: Dict[int, List[float]] = {}
        self.fail_ids = fail_ids or set()
        self.fail_search = fail_search
        self.initialised = False
        self.searches = 0

    def init_collection(self) -> None:
        self.initialised = True

    def insert(self, fact_id: int, vector: Sequence[float], visible: bool = True) -> None:
        if fact_id in self.fail_ids:
            raise VectorIndexError("Insert", f"insert rejected for {fact_id}")
        self.entries[fact_id] = list(vector)

    def search(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        self.searches += 1
        if self.fail_search:
            raise VectorIndexError("Search", "index offline")
        hits = [
            SearchHit(id=i, score=sum(a * b for a, b in zip(vector, v)))
            for i, v in self.entries.items()
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    def delete(self, ids: Sequence[int]) -> None:
        for i in ids:
            self.entries.pop(i, None)

    def drop_collection(self) -> None:
        self.entries.clear()
        self.initialised = False


class ScriptedVectorIndex(DummyVectorIndex):
    """Возвращает заранее заданный список кандидатов."""

    def __init__(self, hits: List[SearchHit]) -> None:
        super().__init__()
        self.hits = hits

    def search(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        return list(self.hits[:top_k])


class DummyFactStore(FactStore):
    """Хранилище фактов в памяти; get_facts намеренно отдаёт строки в обратном порядке."""

    def __init__(self, fail_texts: Optional[Set[str]] = None, fail_reads: bool = False) -> None:
        self.rows: Dict[int, FactRecord] = {}
        self.fail_texts = fail_texts or set()
        self.fail_reads = fail_reads
        self.lookups: List[List[int]] = []
        self._next_id = 100

    def init_schema(self) -> None:
        pass

    def create(self, text: str, vector: Sequence[float], visible: bool = True) -> FactRecord:
        if text in self.fail_texts:
            raise PersistenceError("CreateFact", f"cannot store {text!r}")
        self._next_id += 1
        record = FactRecord(id=self._next_id, text=text, vector=list(vector), visible=visible)
        self.rows[record.id] = record
        return record

    def get_facts(self, ids) -> List[FactRecord]:
        ids = list(ids)
        self.lookups.append(ids)
        if self.fail_reads:
            raise PersistenceError("GetListFacts", "database is locked")
        return [self.rows[i] for i in reversed(ids) if i in self.rows]

    def soft_delete(self, ids) -> int:
        return sum(1 for i in ids if self.rows.pop(i, None) is not None)


class DummyLLM:
    """Минимальная LLM: complete возвращает заданный текст и запоминает промпты."""

    def __init__(self, answer: str = "Paris is the capital of France.", fail: bool = False) -> None:
        self.answer = answer
        self.fail = fail
        self.prompts: List[str] = []

    def complete(self, prompt: str, **kwargs):
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model overloaded")
        return SimpleNamespace(text=self.answer)


def make_settings(top_k: int = 5, score_threshold: float = 0.0) -> Settings:
    return Settings(
        fact_store=FactStoreConfig(database_url="sqlite://"),
        vector_store=VectorStoreConfig(backend="faiss", dimension=DIM),
        retrieval=RetrievalConfig(top_k=top_k, score_threshold=score_threshold),
        streaming=StreamingConfig(token_delay=0.0),
    )


@pytest.fixture
def embedder() -> DummyEmbedder:
    return DummyEmbedder()


@pytest.fixture
def fact_store() -> DummyFactStore:
    return DummyFactStore()


@pytest.fixture
def vector_index() -> DummyVectorIndex:
    return DummyVectorIndex()


@pytest.fixture
def llm() -> DummyLLM:
    return DummyLLM()


@pytest.fixture
def service(embedder, fact_store, vector_index, llm) -> RAGService:
    return RAGService(make_settings(), embedder, fact_store, vector_index, llm)
