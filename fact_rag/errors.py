#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Иерархия ошибок RAG-пайплайна.

Каждая ошибка знает имя операции, на которой произошёл сбой (operation),
чтобы лог и обработчики верхнего уровня могли сослаться на неё.
"""


class RAGError(Exception):
    """Базовая ошибка пайплайна.

    result заполняется, если ошибка прервала Chat: это ChatResult со
    стадиями вплоть до Failed.
    """

    def __init__(self, operation: str, message: str = "") -> None:
        self.operation = operation
        self.message = message or self.__class__.__name__
        self.result = None
        super().__init__(f"{operation}: {self.message}")


class ConfigError(RAGError):
    """Некорректная конфигурация."""


class InputError(RAGError):
    """Некорректные входные данные, дошедшие до ядра."""


class ProviderError(RAGError):
    """Сбой провайдера эмбеддингов или LLM (сеть, авторизация, таймаут)."""


class PersistenceError(RAGError):
    """Сбой чтения/записи хранилища фактов."""


class VectorIndexError(RAGError):
    """Сбой векторного индекса."""


class NoDataError(RAGError):
    """Поиск по индексу не вернул ни одного кандидата."""
