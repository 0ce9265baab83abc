#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Sequence

from llama_index.core.llms import LLM

from .config import RetrievalConfig, StreamingConfig
from .embeddings import EmbeddingProvider
from .errors import NoDataError, ProviderError, RAGError
from .factstore import FactStore
from .prompts import build_prompt
from .vectorstore import SearchHit, VectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedFact:
    id: int
    score: float
    text: str


class Retriever:
    """Запрос -> отфильтрованный по порогу, упорядоченный список фактов.

    - embed_query: векторизация запроса (батч из одного элемента)
    - search: top-K ближайших соседей без фильтров и партиций
    - filter_hits: жёсткий отсев кандидатов со скором ниже порога
    - resolve: одна пакетная выборка текстов из хранилища фактов
    """
    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        fact_store: FactStore,
        cfg: RetrievalConfig,
    ) -> None:
        self._embedder = embedder
        self._vector_index = vector_index
        self._fact_store = fact_store
        self._cfg = cfg

    @property
    def score_threshold(self) -> float:
        return self._cfg.score_threshold

    def embed_query(self, query: str) -> List[float]:
        vectors = self._embedder.embed([query])
        if not vectors or not vectors[0]:
            raise ProviderError("CreateEmbeddings", "empty embedding for query")
        return vectors[0]

    def search(self, vector: Sequence[float]) -> List[SearchHit]:
        hits = self._vector_index.search(vector, self._cfg.top_k)
        if not hits:
            raise NoDataError("Search", "no data")
        return hits

    def filter_hits(self, hits: Sequence[SearchHit]) -> List[SearchHit]:
        kept = [h for h in hits if h.score >= self._cfg.score_threshold]
        # sorted() стабилен: при равных скорах порядок индекса сохраняется
        return sorted(kept, key=lambda h: h.score, reverse=True)

    def resolve(self, hits: Sequence[SearchHit]) -> List[RetrievedFact]:
        if not hits:
            return []
        records = self._fact_store.get_facts([h.id for h in hits])
        # Хранилище не гарантирует порядок строк: сопоставляем по id
        by_id: Dict[int, str] = {r.id: r.text for r in records}
        facts = []
        for hit in hits:
            text = by_id.get(hit.id)
            if text is None:
                logger.warning("Fact %d found in vector index but not in fact store", hit.id)
                continue
            facts.append(RetrievedFact(id=hit.id, score=hit.score, text=text))
        return facts

    def retrieve(self, query: str) -> List[RetrievedFact]:
        vector = self.embed_query(query)
        return self.resolve(self.filter_hits(self.search(vector)))


class AnswerGenerator:
    """Получение ответа от LLM и его выдача целиком или «печатью» по токенам.

    generate отправляет промпт одним user-сообщением и ждёт готовый текст.
    pace делит готовый текст по пробельным символам и отдаёт токены по одному,
    делая паузу token_delay после каждого. Пауза нужна только для визуального эффекта,
    к генерации она отношения не имеет.
    """
    def __init__(self, llm: LLM, cfg: StreamingConfig, sleep: Callable[[float], None] = time.sleep) -> None:
        self._llm = llm
        self._cfg = cfg
        self._sleep = sleep

    def generate(self, prompt: str) -> str:
        try:
            return self._llm.complete(prompt).text
        except Exception as exc:
            logger.error("CreateChatCompletion failed: %s", exc)
            raise ProviderError("CreateChatCompletion", str(exc)) from exc

    @staticmethod
    def tokenize(text: str) -> List[str]:
        return text.split()

    def pace(self, text: str) -> Iterator[str]:
        for token in self.tokenize(text):
            yield token
            self._sleep(self._cfg.token_delay)


class ChatStage(str, Enum):
    RECEIVED = "received"
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    FILTERING = "filtering"
    RESOLVING = "resolving"
    PROMPTING = "prompting"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ChatResult:
    query: str
    answer: str = ""
    prompt: str = ""
    facts: List[RetrievedFact] = field(default_factory=list)
    stages: List[ChatStage] = field(default_factory=lambda: [ChatStage.RECEIVED])

    @property
    def stage(self) -> ChatStage:
        return self.stages[-1]

    def advance(self, stage: ChatStage) -> None:
        logger.debug("Chat stage %s -> %s", self.stage.value, stage.value)
        self.stages.append(stage)


class ChatPipeline:
    """Полный цикл Chat: Embedding -> Searching -> Filtering -> Resolving -> Prompting -> Generating.

    Любой сбой внешнего вызова переводит запрос в Failed без повторов.
    """
    def __init__(self, retriever: Retriever, generator: AnswerGenerator) -> None:
        self.retriever = retriever
        self.generator = generator

    def answer(self, query: str) -> ChatResult:
        logger.info("Begin Chat: %r", query)
        result = ChatResult(query=query)
        try:
            result.advance(ChatStage.EMBEDDING)
            vector = self.retriever.embed_query(query)
            result.advance(ChatStage.SEARCHING)
            hits = self.retriever.search(vector)
            result.advance(ChatStage.FILTERING)
            kept = self.retriever.filter_hits(hits)
            result.advance(ChatStage.RESOLVING)
            result.facts = self.retriever.resolve(kept)
            if not result.facts:
                logger.info("No facts above threshold %s for query", self.retriever.score_threshold)
            result.advance(ChatStage.PROMPTING)
            result.prompt = build_prompt([f.text for f in result.facts], query)
            result.advance(ChatStage.GENERATING)
            result.answer = self.generator.generate(result.prompt)
        except RAGError as exc:
            logger.error("Chat failed at %s (%s): %s", result.stage.value, exc.operation, exc.message)
            result.advance(ChatStage.FAILED)
            exc.result = result
            raise
        result.advance(ChatStage.COMPLETED)
        return result
