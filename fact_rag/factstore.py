#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Хранилище фактов (correlation store) на SQLAlchemy.

Связывает целочисленный id с исходным текстом. Тот же id используется как
первичный ключ записи в векторном индексе, другой связи между хранилищами нет.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Sequence

import numpy as np
from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, Text, create_engine, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import FactStoreConfig
from .errors import PersistenceError

logger = logging.getLogger(__name__)

Base = declarative_base()


class FactRow(Base):
    __tablename__ = "facts"

    # BigInteger для Postgres/MySQL, Integer для SQLite (иначе нет autoincrement)
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    fact = Column(Text, nullable=False)
    vector = Column(Text, nullable=False)  # base64 little-endian float32
    is_visible = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)


@dataclass(frozen=True)
class FactRecord:
    id: int
    text: str
    vector: List[float]
    visible: bool = True


def encode_vector(vector: Sequence[float]) -> str:
    """float32 little-endian -> base64."""
    return base64.b64encode(np.asarray(vector, dtype="<f4").tobytes()).decode("ascii")


def decode_vector(encoded: str) -> List[float]:
    raw = base64.b64decode(encoded)
    if len(raw) % 4 != 0:
        raise ValueError(f"invalid byte length {len(raw)}")
    return np.frombuffer(raw, dtype="<f4").astype(float).tolist()


def _to_record(row: FactRow) -> FactRecord:
    return FactRecord(id=int(row.id), text=row.fact, vector=decode_vector(row.vector), visible=bool(row.is_visible))


class FactStore:
    """SQLAlchemy-реализация хранилища фактов.

    - create: сохраняет факт и возвращает запись с присвоенным id
    - get_facts: пакетная выборка по списку id; порядок строк НЕ гарантирован
    - soft_delete: помечает записи deleted_at, после чего get_facts их не видит
    """

    def __init__(self, cfg: FactStoreConfig, engine=None) -> None:
        self.cfg = cfg
        if engine is None:
            kwargs = {"echo": cfg.echo}
            if cfg.database_url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
                if cfg.database_url in ("sqlite://", "sqlite:///:memory:"):
                    kwargs["poolclass"] = StaticPool
            engine = create_engine(cfg.database_url, **kwargs)
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def init_schema(self) -> None:
        """Создаёт таблицы, если их нет."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as exc:
            logger.error("InitSchema failed: %s", exc)
            raise PersistenceError("InitSchema", str(exc)) from exc

    def create(self, text: str, vector: Sequence[float], visible: bool = True) -> FactRecord:
        row = FactRow(fact=text, vector=encode_vector(vector), is_visible=visible)
        try:
            with self._session_factory() as session, session.begin():
                session.add(row)
                session.flush()
                record = _to_record(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("CreateFact", str(exc)) from exc
        return record

    def get_facts(self, ids: Iterable[int]) -> List[FactRecord]:
        ids = [int(i) for i in ids]
        if not ids:
            return []
        stmt = select(FactRow).where(
            FactRow.id.in_(ids),
            FactRow.is_visible.is_(True),
            FactRow.deleted_at.is_(None),
        )
        try:
            with self._session_factory() as session:
                rows = session.execute(stmt).scalars().all()
                return [_to_record(r) for r in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError("GetListFacts", str(exc)) from exc


    def soft_delete(self, ids: Iterable[int]) -> int:
        """Проставляет deleted_at; возвращает число помеченных записей."""
        ids = [int(i) for i in ids]
        if not ids:
            return 0
        stmt = (
            update(FactRow)
            .where(FactRow.id.in_(ids), FactRow.deleted_at.is_(None))
            .values(deleted_at=datetime.utcnow())
        )
        try:
            with self._session_factory() as session, session.begin():
                return session.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise PersistenceError("DeleteFacts", str(exc)) from exc
