#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Векторный индекс: единый интерфейс и адаптеры под конкретные бэкенды.

Бэкенд выбирается один раз при старте (make_vector_index); ядро пайплайна
работает только с интерфейсом VectorIndex и не знает, что под ним.
Скор у всех бэкендов трактуется одинаково: больше значит ближе.
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import numpy as np

from .config import VectorStoreConfig
from .errors import ConfigError, VectorIndexError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchHit:
    id: int
    score: float


class VectorIndex(ABC):
    """Хранилище векторов с целочисленным id в роли первичного ключа."""

    def __init__(self, cfg: VectorStoreConfig) -> None:
        if cfg.metric not in ("ip", "cosine"):
            raise ConfigError("VectorIndex", f"unsupported metric: {cfg.metric!r}")
        self.cfg = cfg

    def _check_dimension(self, vector: Sequence[float], operation: str) -> None:
        if len(vector) != self.cfg.dimension:
            raise VectorIndexError(
                operation, f"vector dimension {len(vector)} does not match {self.cfg.dimension}"
            )

    @abstractmethod
    def init_collection(self) -> None:
        """Создаёт коллекцию с размерностью D, если её нет, и готовит её к поиску."""

    @abstractmethod
    def insert(self, fact_id: int, vector: Sequence[float], visible: bool = True) -> None:
        ...

    @abstractmethod
    def search(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        """Возвращает до top_k соседей по убыванию скора."""

    @abstractmethod
    def delete(self, ids: Sequence[int]) -> None:
        """Удаляет векторы с указанными id; отсутствующие id пропускаются."""

    @abstractmethod
    def drop_collection(self) -> None:
        """Удаляет коллекцию целиком вместе со всеми векторами."""

    def close(self) -> None:
        pass


def make_weaviate_client(cfg: VectorStoreConfig):
    """Создаёт клиент Weaviate в зависимости от конфигурации.

    - embedded: локальный встроенный сервер Weaviate (без внешних сервисов)
    - remote: подключение к удалённому Weaviate (Docker/K8s) по URL, опционально с API‑ключом
    """
    import weaviate
    from weaviate.classes.init import Auth

    if cfg.use_embedded:
        return weaviate.connect_to_embedded()
    if not cfg.weaviate_url:
        raise ConfigError("make_weaviate_client", "Remote Weaviate запрошен, но URL не указан.")

    url = urlparse(cfg.weaviate_url)
    secure = url.scheme == "https"
    host = url.hostname or "localhost"
    auth = Auth.api_key(cfg.weaviate_api_key) if cfg.weaviate_api_key else None
    return weaviate.connect_to_custom(
        http_host=host,
        http_port=url.port or (443 if secure else 8080),
        http_secure=secure,
        grpc_host=host,
        grpc_port=cfg.weaviate_grpc_port,
        grpc_secure=secure,
        auth_credentials=auth,
    )


class WeaviateVectorIndex(VectorIndex):
    """Адаптер Weaviate (клиент v4).

    Объект коллекции хранит fact_id и is_visible; UUID объекта детерминированно
    выводится из fact_id, поэтому связь с хранилищем фактов идёт только по id.
    """

    def __init__(self, cfg: VectorStoreConfig, client=None) -> None:
        super().__init__(cfg)
        self._client = client if client is not None else make_weaviate_client(cfg)

    def _collection(self):
        return self._client.collections.get(self.cfg.collection)

    def _score(self, distance: Optional[float]) -> float:
        if distance is None:
            return float("-inf")
        # Weaviate: dot -> distance = -<a,b>; cosine -> distance = 1 - cos
        if self.cfg.metric == "ip":
            return -float(distance)
        return 1.0 - float(distance)

    def init_collection(self) -> None:
        from weaviate.classes.config import Configure, DataType, Property, VectorDistances
        from weaviate.exceptions import WeaviateBaseError

        distance = VectorDistances.DOT if self.cfg.metric == "ip" else VectorDistances.COSINE
        try:
            if self._client.collections.exists(self.cfg.collection):
                return
            self._client.collections.create(
                self.cfg.collection,
                vectorizer_config=Configure.Vectorizer.none(),
                vector_index_config=Configure.VectorIndex.hnsw(distance_metric=distance),
                properties=[
                    Property(name="fact_id", data_type=DataType.INT),
                    Property(name="is_visible", data_type=DataType.BOOL),
                ],
            )
            logger.info("Created Weaviate collection %s (metric=%s)", self.cfg.collection, self.cfg.metric)
        except WeaviateBaseError as exc:
            raise VectorIndexError("InitCollection", str(exc)) from exc

    def insert(self, fact_id: int, vector: Sequence[float], visible: bool = True) -> None:
        from weaviate.exceptions import WeaviateBaseError
        from weaviate.util import generate_uuid5

        self._check_dimension(vector, "Insert")
        try:
            self._collection().data.insert(
                properties={"fact_id": int(fact_id), "is_visible": bool(visible)},
                uuid=generate_uuid5(int(fact_id)),
                vector=[float(x) for x in vector],
            )
        except WeaviateBaseError as exc:
            raise VectorIndexError("Insert", str(exc)) from exc

    def search(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        from weaviate.classes.query import MetadataQuery
        from weaviate.exceptions import WeaviateBaseError

        self._check_dimension(vector, "Search")
        try:
            res = self._collection().query.near_vector(
                near_vector=[float(x) for x in vector],
                limit=top_k,
                return_metadata=MetadataQuery(distance=True),
                return_properties=["fact_id"],
            )
        except WeaviateBaseError as exc:
            raise VectorIndexError("Search", str(exc)) from exc

        hits = [
            SearchHit(id=int(obj.properties["fact_id"]), score=self._score(obj.metadata.distance))
            for obj in res.objects
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    def delete(self, ids: Sequence[int]) -> None:
        from weaviate.classes.query import Filter
        from weaviate.exceptions import WeaviateBaseError

        ids = [int(i) for i in ids]
        if not ids:
            return
        try:
            self._collection().data.delete_many(where=Filter.by_property("fact_id").contains_any(ids))
        except WeaviateBaseError as exc:
            raise VectorIndexError("Delete", str(exc)) from exc

    def drop_collection(self) -> None:
        from weaviate.exceptions import WeaviateBaseError

        try:
            self._client.collections.delete(self.cfg.collection)
        except WeaviateBaseError as exc:
            raise VectorIndexError("DropCollection", str(exc)) from exc
        logger.info("Dropped Weaviate collection %s", self.cfg.collection)

    def close(self) -> None:
        self._client.close()


class FaissVectorIndex(VectorIndex):
    """Адаптер FAISS: IndexIDMap2 поверх плоского индекса по скалярному произведению.

    Для метрики cosine векторы нормируются перед вставкой и поиском.
    Метаданные (is_visible) FAISS не хранит. Если задан faiss_path, индекс
    читается с диска в init_collection и сохраняется после каждой вставки
    или удаления. Вставка, которую не удалось сохранить, откатывается и в памяти.
    """

    def __init__(self, cfg: VectorStoreConfig) -> None:
        super().__init__(cfg)
        import faiss

        self._faiss = faiss
        self._index = None
        self._lock = threading.Lock()

    def _prepare(self, vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        if self.cfg.metric == "cosine":
            norm = np.linalg.norm(arr)
            if norm > 0:
                arr = arr / norm
        return arr

    def _require_index(self, operation: str):
        if self._index is None:
            raise VectorIndexError(operation, "collection is not initialised")
        return self._index

    def init_collection(self) -> None:
        with self._lock:
            if self._index is not None:
                return
            path = self.cfg.faiss_path
            try:
                if path and os.path.exists(path):
                    index = self._faiss.read_index(path)
                    if index.d != self.cfg.dimension:
                        raise VectorIndexError(
                            "InitCollection", f"stored index has dimension {index.d}, expected {self.cfg.dimension}"
                        )
                else:
                    index = self._faiss.IndexIDMap2(self._faiss.IndexFlatIP(self.cfg.dimension))
            except RuntimeError as exc:
                raise VectorIndexError("InitCollection", str(exc)) from exc
            self._index = index

    def _persist(self) -> None:
        if not self.cfg.faiss_path:
            return
        directory = os.path.dirname(self.cfg.faiss_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        # Пишем во временный файл и подменяем: на диске всегда целый индекс
        tmp_path = self.cfg.faiss_path + ".tmp"
        self._faiss.write_index(self._index, tmp_path)
        os.replace(tmp_path, self.cfg.faiss_path)

    def insert(self, fact_id: int, vector: Sequence[float], visible: bool = True) -> None:
        self._check_dimension(vector, "Insert")
        ids = np.asarray([fact_id], dtype=np.int64)
        with self._lock:
            index = self._require_index("Insert")
            try:
                index.add_with_ids(self._prepare(vector), ids)
            except RuntimeError as exc:
                raise VectorIndexError("Insert", str(exc)) from exc
            try:
                self._persist()
            except (RuntimeError, OSError) as exc:
                index.remove_ids(ids)
                logger.error("Persist failed for fact %d, insert rolled back: %s", fact_id, exc)
                raise VectorIndexError("Insert", str(exc)) from exc

    def delete(self, ids: Sequence[int]) -> None:
        ids = [int(i) for i in ids]
        if not ids:
            return
        with self._lock:
            index = self._require_index("Delete")
            try:
                index.remove_ids(np.asarray(ids, dtype=np.int64))
                self._persist()
            except (RuntimeError, OSError) as exc:
                raise VectorIndexError("Delete", str(exc)) from exc

    def drop_collection(self) -> None:
        with self._lock:
            self._index = None
            path = self.cfg.faiss_path
            try:
                if path and os.path.exists(path):
                    os.remove(path)
            except OSError as exc:
                raise VectorIndexError("DropCollection", str(exc)) from exc

    def search(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        self._check_dimension(vector, "Search")
        with self._lock:
            index = self._require_index("Search")
            if index.ntotal == 0:
                return []
            try:
                scores, ids = index.search(self._prepare(vector), min(top_k, index.ntotal))
            except RuntimeError as exc:
                raise VectorIndexError("Search", str(exc)) from exc
        return [SearchHit(id=int(i), score=float(s)) for s, i in zip(scores[0], ids[0]) if i != -1]

    @property
    def size(self) -> int:
        return 0 if self._index is None else int(self._index.ntotal)


def make_vector_index(cfg: VectorStoreConfig, client=None) -> VectorIndex:
    """Создаёт адаптер векторного индекса согласно cfg.backend."""
    if cfg.backend == "weaviate":
        return WeaviateVectorIndex(cfg, client=client)
    if cfg.backend == "faiss":
        return FaissVectorIndex(cfg)
    raise ConfigError("make_vector_index", f"unknown vector backend: {cfg.backend!r}")
